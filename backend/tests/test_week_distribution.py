from __future__ import annotations

import pytest

from app.api.schemas.program import ActionTaskTemplate, HabitTaskTemplate, LearningTaskTemplate
from app.core.errors import DataIntegrityError
from app.services.week_distribution import (
    ALL_DAYS,
    FILL_FIRST,
    FRONT_LOAD,
    SPREAD,
    distribute_tasks,
    distribute_week,
    parse_task_templates,
    resolve_policy,
    stable_task_id,
    with_stable_ids,
)


def _templates(*labels, **extra):
    return [ActionTaskTemplate(label=label, **extra) for label in labels]


def _labels(per_day):
    return [[template.label for template in day] for day in per_day]


def test_spread_round_robins_in_template_order() -> None:
    per_day = distribute_tasks(_templates("A", "B", "C", "D"), 5, SPREAD)
    assert _labels(per_day) == [["A"], ["B"], ["C"], ["D"], []]


def test_spread_balances_more_tasks_than_days() -> None:
    per_day = distribute_tasks(_templates(*"ABCDEFG"), 5, SPREAD)
    assert [len(day) for day in per_day] == [2, 2, 1, 1, 1]
    assert _labels(per_day)[0] == ["A", "F"]


def test_fill_first_all_days_and_front_load() -> None:
    templates = _templates("A", "B", "C", "D")

    assert _labels(distribute_tasks(templates, 5, FILL_FIRST)) == [["A", "B", "C", "D"], [], [], [], []]
    assert _labels(distribute_tasks(templates, 3, ALL_DAYS)) == [["A", "B", "C", "D"]] * 3
    assert _labels(distribute_tasks(templates, 5, FRONT_LOAD)) == [["A", "D"], ["B"], ["C"], [], []]


def test_day_tags_pin_tasks_regardless_of_policy() -> None:
    templates = [
        ActionTaskTemplate(label="Daily", day_tag="daily"),
        ActionTaskTemplate(label="Pinned", day_tag=[1, 3, 9]),
        ActionTaskTemplate(label="Third", day_tag=3),
        ActionTaskTemplate(label="Spread", day_tag="spread"),
        HabitTaskTemplate(type="habit", label="Water"),
    ]
    per_day = _labels(distribute_tasks(templates, 3, FILL_FIRST))

    assert per_day[0] == ["Daily", "Pinned", "Spread", "Water"]
    assert per_day[1] == ["Daily", "Water"]
    assert per_day[2] == ["Daily", "Pinned", "Third", "Water"]


def test_unknown_template_type_is_rejected() -> None:
    with pytest.raises(TypeError):
        distribute_tasks([object()], 3, SPREAD)


def test_resolve_policy_aliases_and_fallbacks() -> None:
    assert resolve_policy("fill_first") == FILL_FIRST
    assert resolve_policy("repeat-daily") == ALL_DAYS
    assert resolve_policy(None, "bogus", "front_load") == FRONT_LOAD
    assert resolve_policy() == SPREAD
    assert resolve_policy("bogus") == SPREAD


def test_parse_task_templates_picks_variant_by_type() -> None:
    parsed = parse_task_templates(
        [
            {"label": "Plain"},
            {"label": "Read", "type": "learning", "resource_url": "https://example.com"},
            {"label": "Water", "type": "habit"},
        ]
    )
    assert isinstance(parsed[0], ActionTaskTemplate)
    assert isinstance(parsed[1], LearningTaskTemplate)
    assert parsed[1].resource_url == "https://example.com"
    assert isinstance(parsed[2], HabitTaskTemplate)


def test_parse_task_templates_rejects_bad_items() -> None:
    with pytest.raises(DataIntegrityError):
        parse_task_templates([{"label": ""}])
    with pytest.raises(DataIntegrityError):
        parse_task_templates([{"label": "X", "type": "quiz"}])


def test_generated_ids_are_stable_and_authored_ids_kept() -> None:
    templates = [ActionTaskTemplate(label="A"), ActionTaskTemplate(id="custom", label="B")]

    first = with_stable_ids("week/1", templates)
    second = with_stable_ids("week/1", templates)

    assert first[0].id == second[0].id == stable_task_id("week/1", 0, "A")
    assert first[1].id == "custom"
    assert stable_task_id("week/2", 0, "A") != first[0].id


def _week_doc():
    return {
        "week_number": 1,
        "weekly_tasks": [
            {"id": "a", "label": "A", "is_primary": True},
            {"id": "b", "label": "B"},
        ],
        "days": [
            {"day_index": 1, "global_day_index": 1, "tasks": [{"id": "old", "label": "Old", "source": "week"}]},
            {"day_index": 2, "global_day_index": 2, "tasks": [{"id": "kick", "label": "Kickoff", "source": "day"}]},
        ],
    }


def test_distribute_week_replaces_only_week_sourced_tasks() -> None:
    original = _week_doc()
    updated, result = distribute_week(original, policy=SPREAD)

    assert [task["id"] for task in updated["days"][0]["tasks"]] == ["a"]
    assert [task["id"] for task in updated["days"][1]["tasks"]] == ["kick", "b"]
    assert updated["days"][0]["tasks"][0]["source"] == "week"
    assert result.recomputed_days == [1, 2]
    # The input document is left untouched.
    assert original["days"][0]["tasks"][0]["id"] == "old"


def test_distribute_week_can_skip_materialized_days() -> None:
    updated, result = distribute_week(
        _week_doc(),
        policy=SPREAD,
        overwrite_existing=False,
        materialized_days={1},
    )

    assert [task["id"] for task in updated["days"][0]["tasks"]] == ["old"]
    assert result.skipped_days == [1]
    assert result.recomputed_days == [2]
