"""Reconcile instance day tasks into a user's live task rows.

Three modes:

- ``create-missing``: insert template tasks the user does not have yet
  (matched by ``instance_task_id``); existing rows are never touched.
- ``fill-empty``: same as create-missing, but only for days that carry no
  program-sourced rows at all. Used for future days after a non-destructive
  template edit.
- ``override-program-sourced``: delete this instance's rows for the day
  unless they are completed or client-locked, then re-insert from the
  current instance state.

Completed and locked rows survive every mode.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.api.schemas.program import InstanceTask
from app.core.errors import DataIntegrityError
from app.db.models.task import Task
from app.db.write_batch import DEFAULT_BATCH_LIMIT, WriteBatch
from app.services.calendar import parse_date
from app.services.focus_slots import available_focus_slots
from app.services.instance_materializer import InstanceView

logger = logging.getLogger(__name__)

FOCUS = "focus"
BACKLOG = "backlog"
PROGRAM_SOURCE = "program"


class SyncMode(str, Enum):
    CREATE_MISSING = "create-missing"
    FILL_EMPTY = "fill-empty"
    OVERRIDE_PROGRAM_SOURCED = "override-program-sourced"


@dataclass
class DaySyncResult:
    day_index: int
    date: date
    created: int = 0
    skipped: int = 0
    replaced: int = 0
    focus_created: int = 0
    backlog_created: int = 0


@dataclass
class RangeSyncResult:
    days: List[DaySyncResult] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(day.created for day in self.days)

    @property
    def replaced(self) -> int:
        return sum(day.replaced for day in self.days)

    @property
    def skipped(self) -> int:
        return sum(day.skipped for day in self.days)


def is_protected(task: Task) -> bool:
    """Completed or client-locked rows are never deleted or rewritten by sync."""
    return task.status == "completed" or bool(task.client_locked)


def allocation_order(tasks: Sequence[InstanceTask]) -> List[InstanceTask]:
    """Primary tasks first, then the rest; template order within each group."""
    return [task for task in tasks if task.is_primary] + [task for task in tasks if not task.is_primary]


def resolve_task_date(instance: InstanceView, day_index: int, member_date: date) -> date:
    """Individual instances carry fixed dates; cohort days use the member's local date."""
    day = instance.day(day_index)
    if not instance.is_cohort and day and day.get("calendar_date"):
        return parse_date(day["calendar_date"])
    return member_date


def day_has_program_tasks(db: Session, *, instance_id: UUID, user_id: UUID, day_index: int) -> bool:
    return (
        db.query(Task.id)
        .filter(
            Task.user_id == user_id,
            Task.instance_id == instance_id,
            Task.day_index == day_index,
        )
        .first()
        is not None
    )


def instance_day_tasks(instance: InstanceView, day_index: int) -> List[InstanceTask]:
    day = instance.day(day_index)
    if day is None:
        return []
    try:
        return [InstanceTask.model_validate(task) for task in day.get("tasks") or []]
    except ValidationError as exc:
        raise DataIntegrityError(f"Instance {instance.id} day {day_index} has malformed tasks: {exc}") from exc


def _foreign_focus_count(db: Session, *, user_id: UUID, task_date: date, instance_id: UUID) -> int:
    """Focus rows the user has on this date that belong to anything but this instance."""
    return (
        db.query(func.count(Task.id))
        .filter(
            Task.user_id == user_id,
            Task.date == task_date,
            Task.list_type == FOCUS,
            Task.status != "deleted",
            or_(Task.instance_id.is_(None), Task.instance_id != instance_id),
        )
        .scalar()
        or 0
    )


def _next_orders(db: Session, *, user_id: UUID, task_date: date) -> Dict[str, int]:
    rows = (
        db.query(Task.list_type, func.max(Task.order))
        .filter(Task.user_id == user_id, Task.date == task_date)
        .group_by(Task.list_type)
        .all()
    )
    orders = {FOCUS: 0, BACKLOG: 0}
    for list_type, max_order in rows:
        if list_type in orders and max_order is not None:
            orders[list_type] = max_order + 1
    return orders


def sync_instance_day(
    db: Session,
    instance: InstanceView,
    *,
    user_id: UUID,
    day_index: int,
    task_date: date,
    focus_limit: int,
    mode: SyncMode = SyncMode.CREATE_MISSING,
    enrollment_id: Optional[UUID] = None,
    batch_limit: int = DEFAULT_BATCH_LIMIT,
) -> DaySyncResult:
    """Make the user's rows for one instance day match the instance.

    All writes for the user-day are committed together.
    """
    result = DaySyncResult(day_index=day_index, date=task_date)
    templates = instance_day_tasks(instance, day_index)

    existing: List[Task] = (
        db.query(Task)
        .filter(
            Task.user_id == user_id,
            Task.instance_id == instance.id,
            Task.day_index == day_index,
        )
        .all()
    )

    if mode == SyncMode.FILL_EMPTY and any(row.status != "deleted" for row in existing):
        result.skipped = len(templates)
        return result

    batch = WriteBatch(db, limit=batch_limit)
    retained: Dict[str, Task] = {}
    for row in existing:
        if mode == SyncMode.OVERRIDE_PROGRAM_SOURCED and not is_protected(row):
            batch.delete(row)
            result.replaced += 1
        elif row.instance_task_id:
            retained[row.instance_task_id] = row
    if result.replaced:
        # Deletes must reach the database before re-inserts reuse their keys.
        db.flush()

    # Kept focus rows whose template left the day still hold their slot.
    template_ids = {template.id for template in templates}
    stale_focus = sum(
        1
        for task_id, row in retained.items()
        if task_id not in template_ids and row.list_type == FOCUS and row.status != "deleted"
    )
    available = available_focus_slots(
        _foreign_focus_count(db, user_id=user_id, task_date=task_date, instance_id=instance.id) + stale_focus,
        focus_limit,
    )
    orders = _next_orders(db, user_id=user_id, task_date=task_date)
    seen: set[str] = set()

    for template in allocation_order(templates):
        if template.id in seen:
            continue
        seen.add(template.id)

        row = retained.get(template.id)
        if row is not None:
            if row.list_type == FOCUS and row.status != "deleted":
                available = max(0, available - 1)
            result.skipped += 1
            continue

        if template.is_primary and available > 0:
            list_type = FOCUS
            available -= 1
            result.focus_created += 1
        else:
            list_type = BACKLOG
            result.backlog_created += 1

        batch.add(
            Task(
                user_id=user_id,
                organization_id=instance.organization_id,
                program_id=instance.program_id,
                enrollment_id=enrollment_id or instance.enrollment_id,
                instance_id=instance.id,
                instance_task_id=template.id,
                day_index=day_index,
                date=task_date,
                title=template.label,
                kind=template.type,
                list_type=list_type,
                order=orders[list_type],
                status="pending",
                client_locked=False,
                source=PROGRAM_SOURCE,
                estimated_minutes=template.estimated_minutes,
                notes=template.notes,
                tag=template.tag,
            )
        )
        orders[list_type] += 1
        result.created += 1

    batch.commit()
    if result.created or result.replaced:
        logger.info(
            "Synced day %s (%s) for user %s in %s mode: created=%s (focus=%s, backlog=%s) replaced=%s",
            day_index,
            task_date.isoformat(),
            user_id,
            mode.value,
            result.created,
            result.focus_created,
            result.backlog_created,
            result.replaced,
        )
    return result


def sync_instance_days(
    db: Session,
    instance: InstanceView,
    *,
    user_id: UUID,
    days: Iterable[Tuple[int, date]],
    focus_limit: int,
    mode: SyncMode,
    enrollment_id: Optional[UUID] = None,
    batch_limit: int = DEFAULT_BATCH_LIMIT,
) -> RangeSyncResult:
    """Sync several ``(day_index, task_date)`` pairs for one user, in order."""
    outcome = RangeSyncResult()
    for day_index, task_date in days:
        outcome.days.append(
            sync_instance_day(
                db,
                instance,
                user_id=user_id,
                day_index=day_index,
                task_date=task_date,
                focus_limit=focus_limit,
                mode=mode,
                enrollment_id=enrollment_id,
                batch_limit=batch_limit,
            )
        )
    return outcome
