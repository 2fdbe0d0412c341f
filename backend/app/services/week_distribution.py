"""Spread a week's task list across the week's concrete days."""
from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import NAMESPACE_URL, uuid5

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from app.api.schemas.program import (
    ActionTaskTemplate,
    AdminTaskTemplate,
    HabitTaskTemplate,
    LearningTaskTemplate,
    TaskTemplate,
)
from app.core.errors import DataIntegrityError, NotFoundError
from app.db.models.program_instance import ProgramInstance
from app.db.models.task import Task

logger = logging.getLogger(__name__)

SPREAD = "spread"
FILL_FIRST = "fill-first"
ALL_DAYS = "all-days"
FRONT_LOAD = "front-load"

_POLICY_ALIASES = {
    "spread": SPREAD,
    "fill-first": FILL_FIRST,
    "fill_first": FILL_FIRST,
    "first_day": FILL_FIRST,
    "all-days": ALL_DAYS,
    "all_days": ALL_DAYS,
    "repeat-daily": ALL_DAYS,
    "front-load": FRONT_LOAD,
    "front_load": FRONT_LOAD,
}

_TASK_TEMPLATES = TypeAdapter(List[TaskTemplate])


@dataclass
class WeekDistributionResult:
    week_number: int
    recomputed_days: List[int] = field(default_factory=list)
    skipped_days: List[int] = field(default_factory=list)


def resolve_policy(*candidates: Optional[str]) -> str:
    """First recognised policy among ``candidates`` (week, program, org), else spread."""
    for candidate in candidates:
        if not candidate:
            continue
        policy = _POLICY_ALIASES.get(candidate.strip().lower())
        if policy:
            return policy
        logger.warning("Unknown distribution policy %r; trying next fallback", candidate)
    return SPREAD


def stable_task_id(scope: str, position: int, label: str) -> str:
    """Deterministic id for templates authored without one.

    ``scope`` names where the template lives ("week/3", "day/12") so the same
    label authored in two places never shares an id.
    """
    return str(uuid5(NAMESPACE_URL, f"program-task/{scope}/{position}/{label.strip()}"))


def parse_task_templates(items: Iterable[Any]) -> List[TaskTemplate]:
    try:
        return _TASK_TEMPLATES.validate_python(list(items or []))
    except ValidationError as exc:
        raise DataIntegrityError(f"Invalid task templates: {exc}") from exc


def with_stable_ids(scope: str, templates: Sequence[TaskTemplate]) -> List[TaskTemplate]:
    resolved: List[TaskTemplate] = []
    for position, template in enumerate(templates):
        if template.id:
            resolved.append(template)
        else:
            resolved.append(template.model_copy(update={"id": stable_task_id(scope, position, template.label)}))
    return resolved


def task_document(template: TaskTemplate, *, source: str) -> Dict[str, Any]:
    """Serialize a template into the task shape stored on instance days."""
    doc = {
        "id": template.id,
        "label": template.label,
        "type": template.type,
        "is_primary": template.is_primary,
        "estimated_minutes": template.estimated_minutes,
        "notes": template.notes,
        "tag": template.tag,
        "source": source,
    }
    if isinstance(template, LearningTaskTemplate):
        doc["resource_url"] = template.resource_url
    return doc


def _round_robin(count: int, day_count: int) -> List[int]:
    return [position % day_count for position in range(count)]


def _day_positions(template: TaskTemplate, day_count: int) -> Optional[List[int]]:
    """Fixed day positions for a template, or None when spreading or the week policy decides."""
    if isinstance(template, HabitTaskTemplate):
        return list(range(day_count))
    if isinstance(template, (ActionTaskTemplate, LearningTaskTemplate, AdminTaskTemplate)):
        tag = template.day_tag
        if tag == "daily":
            return list(range(day_count))
        if isinstance(tag, list):
            return [day - 1 for day in tag if 1 <= day <= day_count]
        if isinstance(tag, int) and not isinstance(tag, bool):
            return [tag - 1] if 1 <= tag <= day_count else []
        return None
    raise TypeError(f"Unsupported task template {type(template).__name__}")


def distribute_tasks(templates: Sequence[TaskTemplate], day_count: int, policy: str) -> List[List[TaskTemplate]]:
    """Place templates on ``day_count`` days; each day keeps template order."""
    if day_count <= 0:
        return []
    placed: List[List[Tuple[int, TaskTemplate]]] = [[] for _ in range(day_count)]
    spread_group: List[Tuple[int, TaskTemplate]] = []
    auto_group: List[Tuple[int, TaskTemplate]] = []

    for position, template in enumerate(templates):
        positions = _day_positions(template, day_count)
        if positions is not None:
            for day in positions:
                placed[day].append((position, template))
        elif template.day_tag == "spread":
            spread_group.append((position, template))
        else:
            auto_group.append((position, template))

    for item, day in zip(spread_group, _round_robin(len(spread_group), day_count)):
        placed[day].append(item)

    if policy == FILL_FIRST:
        targets = [[0] for _ in auto_group]
    elif policy == ALL_DAYS:
        targets = [list(range(day_count)) for _ in auto_group]
    elif policy == FRONT_LOAD:
        front = max(math.ceil(day_count / 2), 1)
        targets = [[day] for day in _round_robin(len(auto_group), front)]
    else:
        targets = [[day] for day in _round_robin(len(auto_group), day_count)]
    for item, days in zip(auto_group, targets):
        for day in days:
            placed[day].append(item)

    return [[template for _, template in sorted(day, key=lambda entry: entry[0])] for day in placed]


def distribute_week(
    week: Dict[str, Any],
    *,
    policy: str,
    overwrite_existing: bool = True,
    materialized_days: Optional[Set[int]] = None,
) -> Tuple[Dict[str, Any], WeekDistributionResult]:
    """Recompute the ``source == "week"`` tasks of an instance week document.

    Day-level tasks (``source == "day"``) are kept. Days listed in
    ``materialized_days`` keep their current tasks unless
    ``overwrite_existing`` is set.
    """
    updated = copy.deepcopy(week)
    days = updated.get("days") or []
    result = WeekDistributionResult(week_number=updated.get("week_number", 0))
    templates = parse_task_templates(updated.get("weekly_tasks") or [])
    per_day = distribute_tasks(templates, len(days), policy)
    materialized_days = materialized_days or set()

    for day, day_templates in zip(days, per_day):
        global_index = day.get("global_day_index")
        if not overwrite_existing and global_index in materialized_days:
            result.skipped_days.append(global_index)
            continue
        kept = [task for task in day.get("tasks") or [] if task.get("source") != "week"]
        day["tasks"] = kept + [task_document(template, source="week") for template in day_templates]
        result.recomputed_days.append(global_index)
    return updated, result


def materialized_day_indices(db: Session, instance_id, start_day_index: int, end_day_index: int) -> Set[int]:
    """Day indices in a range for which any user already has tasks from this instance."""
    rows = (
        db.query(Task.day_index)
        .filter(
            Task.instance_id == instance_id,
            Task.day_index >= start_day_index,
            Task.day_index <= end_day_index,
        )
        .distinct()
        .all()
    )
    return {row[0] for row in rows}


def redistribute_instance_week(
    db: Session,
    instance: ProgramInstance,
    week_number: int,
    *,
    weekly_tasks: Optional[Sequence[Any]] = None,
    distribution: Optional[str] = None,
    overwrite_existing: bool = True,
    fallback_policies: Sequence[Optional[str]] = (),
) -> WeekDistributionResult:
    """Apply a coach edit to one instance week and recompute its days.

    The caller owns the transaction; the instance document is reassigned and
    flushed but not committed.
    """
    weeks = copy.deepcopy(instance.weeks or [])
    index = next((i for i, week in enumerate(weeks) if week.get("week_number") == week_number), None)
    if index is None:
        raise NotFoundError(f"Week {week_number} not found in instance {instance.id}")
    week = weeks[index]

    if weekly_tasks is not None:
        templates = with_stable_ids(f"week/{week_number}", parse_task_templates(weekly_tasks))
        week["weekly_tasks"] = [template.model_dump(mode="json") for template in templates]
    if distribution is not None:
        week["distribution"] = distribution

    days = week.get("days") or []
    if not days:
        raise DataIntegrityError(f"Week {week_number} of instance {instance.id} has no days")

    policy = resolve_policy(week.get("distribution"), *fallback_policies)
    materialized = set()
    if not overwrite_existing:
        materialized = materialized_day_indices(db, instance.id, week["start_day_index"], week["end_day_index"])

    updated_week, result = distribute_week(
        week,
        policy=policy,
        overwrite_existing=overwrite_existing,
        materialized_days=materialized,
    )
    updated_week["has_local_changes"] = True
    weeks[index] = updated_week
    instance.weeks = weeks
    db.add(instance)
    db.flush()
    logger.info(
        "Redistributed week %s of instance %s with %s policy (recomputed=%s, skipped=%s)",
        week_number,
        instance.id,
        policy,
        len(result.recomputed_days),
        len(result.skipped_days),
    )
    return result
