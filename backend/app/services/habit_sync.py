"""Keep a user's module-default habits aligned with their current module."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from app.api.schemas.program import HabitTemplate
from app.db.models.habit import Habit
from app.db.write_batch import DEFAULT_BATCH_LIMIT, WriteBatch
from app.services.program_templates import ModuleRange, module_for_day

logger = logging.getLogger(__name__)

MODULE_DEFAULT = "module_default"
DEFAULT_MAX_HABITS = 3

ALL_DAYS = [0, 1, 2, 3, 4, 5, 6]
WEEKDAYS = [0, 1, 2, 3, 4]
DEFAULT_CUSTOM_DAYS = [0, 2, 4]


@dataclass
class HabitSyncResult:
    created: int = 0
    updated: int = 0
    archived: int = 0
    module_id: Optional[str] = None


def resolve_module(modules: Sequence[ModuleRange], day_index: int) -> Optional[ModuleRange]:
    """Module for ``day_index``; beyond the last module clamps to it, before the first clamps to the first."""
    return module_for_day(sorted(modules, key=lambda module: module.start_day_index), day_index)


def frequency_for(template: HabitTemplate) -> Tuple[str, List[int]]:
    """Map a template frequency to ``(frequency_type, days_of_week)`` with Monday=0."""
    if template.frequency == "daily":
        return "daily", list(ALL_DAYS)
    if template.frequency == "weekday":
        return "weekday", list(WEEKDAYS)
    days = sorted({day for day in (template.days_of_week or []) if 0 <= day <= 6})
    return "custom", days or list(DEFAULT_CUSTOM_DAYS)


def _title_key(title: str) -> str:
    return " ".join(title.split()).casefold()


def sync_module_habits(
    db: Session,
    *,
    user_id: UUID,
    organization_id: Optional[UUID],
    program_id: UUID,
    modules: Sequence[ModuleRange],
    day_index: int,
    max_habits: int = DEFAULT_MAX_HABITS,
    batch_limit: int = DEFAULT_BATCH_LIMIT,
) -> HabitSyncResult:
    """Reconcile ``module_default`` habits to the current module's templates.

    Missing habits are created, out-of-scope ones archived (never deleted) and
    the rest updated in place. Matching is by title so re-syncs stay stable
    when template ids change.
    """
    result = HabitSyncResult()
    module = resolve_module(modules, day_index)
    templates: List[HabitTemplate] = []
    if module is not None:
        result.module_id = module.id
        unique: Dict[str, HabitTemplate] = {}
        for template in module.habits:
            unique.setdefault(_title_key(template.title), template)
        templates = list(unique.values())[:max_habits]

    existing: List[Habit] = (
        db.query(Habit)
        .filter(
            Habit.user_id == user_id,
            Habit.program_id == program_id,
            Habit.source == MODULE_DEFAULT,
            Habit.archived.is_(False),
        )
        .order_by(Habit.created_at.asc())
        .all()
    )

    batch = WriteBatch(db, limit=batch_limit)
    by_title: Dict[str, Habit] = {}
    for habit in existing:
        key = _title_key(habit.text)
        if key in by_title:
            habit.archived = True
            batch.update(habit)
            result.archived += 1
        else:
            by_title[key] = habit

    wanted = {_title_key(template.title) for template in templates}
    for key, habit in by_title.items():
        if key not in wanted:
            habit.archived = True
            batch.update(habit)
            result.archived += 1

    for template in templates:
        frequency_type, days = frequency_for(template)
        habit = by_title.get(_title_key(template.title))
        if habit is None:
            batch.add(
                Habit(
                    user_id=user_id,
                    organization_id=organization_id,
                    program_id=program_id,
                    module_id=result.module_id,
                    text=template.title,
                    description=template.description,
                    frequency_type=frequency_type,
                    days_of_week=days,
                    source=MODULE_DEFAULT,
                    archived=False,
                )
            )
            result.created += 1
            continue

        changed = False
        if habit.frequency_type != frequency_type or list(habit.days_of_week or []) != days:
            habit.frequency_type = frequency_type
            habit.days_of_week = days
            changed = True
        if habit.description != template.description:
            habit.description = template.description
            changed = True
        if habit.module_id != result.module_id:
            habit.module_id = result.module_id
            changed = True
        if changed:
            batch.update(habit)
            result.updated += 1

    batch.commit()
    if result.created or result.updated or result.archived:
        logger.info(
            "Habit sync for user %s (module %s): created=%s updated=%s archived=%s",
            user_id,
            result.module_id,
            result.created,
            result.updated,
            result.archived,
        )
    return result
