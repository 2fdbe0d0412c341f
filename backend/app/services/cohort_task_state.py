"""Cohort completion rollups: how much of a cohort finished each program task.

One :class:`CohortTaskState` row exists per cohort, instance task and program
day. Cohort syncs create the rows and top up new members; members completing
or reopening their copy of the task update their entry and the aggregates.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.models.cohort_task_state import CohortTaskState
from app.db.models.program import Program, ProgramEnrollment
from app.db.models.program_instance import ProgramInstance
from app.db.models.task import Task
from app.services.calendar import calendar_date_for_day
from app.services.instance_materializer import InstanceView
from app.services.task_sync import PROGRAM_SOURCE, instance_day_tasks

logger = logging.getLogger(__name__)

DEFAULT_COMPLETION_THRESHOLD = 50
MEMBER_STATUSES = ("active", "upcoming")
PENDING = "pending"
COMPLETED = "completed"


@dataclass
class CohortStateCounts:
    created: int = 0
    updated: int = 0


def cohort_member_ids(db: Session, cohort_id: UUID) -> List[UUID]:
    rows = (
        db.query(ProgramEnrollment.user_id)
        .filter(ProgramEnrollment.cohort_id == cohort_id, ProgramEnrollment.status.in_(MEMBER_STATUSES))
        .order_by(ProgramEnrollment.created_at.asc())
        .all()
    )
    return list(dict.fromkeys(row.user_id for row in rows))


def completion_threshold(db: Session, program_id: UUID) -> int:
    program = db.get(Program, program_id)
    value = program.cohort_completion_threshold if program else None
    return DEFAULT_COMPLETION_THRESHOLD if value is None else value


def recalculate_aggregates(state: CohortTaskState, threshold: int) -> None:
    """Recount members, completions and the rounded completion percentage.

    Removed members are ignored. Halves round up.
    """
    total = completed = 0
    for member in (state.member_states or {}).values():
        if member.get("removed"):
            continue
        total += 1
        if member.get("status") == COMPLETED:
            completed += 1
    rate = (completed * 200 + total) // (2 * total) if total else 0
    state.total_members = total
    state.completed_count = completed
    state.completion_rate = rate
    state.threshold_met = rate >= threshold


def _pending_members(member_ids: Iterable[UUID]) -> Dict[str, Dict[str, object]]:
    return {str(user_id): {"status": PENDING} for user_id in member_ids}


def _new_state(
    *,
    cohort_id: UUID,
    instance_id: UUID,
    program_id: UUID,
    organization_id: UUID,
    day_index: int,
    instance_task_id: str,
    title: str,
    task_date,
    member_ids: Iterable[UUID],
) -> CohortTaskState:
    return CohortTaskState(
        cohort_id=cohort_id,
        instance_id=instance_id,
        program_id=program_id,
        organization_id=organization_id,
        day_index=day_index,
        instance_task_id=instance_task_id,
        title=title,
        date=task_date,
        member_states=_pending_members(member_ids),
    )


def ensure_cohort_task_states(
    db: Session,
    instance: InstanceView,
    day_indices: Iterable[int],
    member_ids: Sequence[UUID],
    *,
    prune: bool = False,
    threshold: Optional[int] = None,
) -> CohortStateCounts:
    """Create rollups for each instance task on ``day_indices`` and add missing members as pending.

    With ``prune`` members absent from ``member_ids`` are marked removed.
    Existing completion entries are never reset. The caller commits.
    """
    counts = CohortStateCounts()
    if not instance.is_cohort or instance.cohort_id is None:
        return counts
    threshold = completion_threshold(db, instance.program_id) if threshold is None else threshold
    wanted = {str(user_id) for user_id in member_ids}

    for day_index in sorted(set(day_indices)):
        templates = instance_day_tasks(instance, day_index)
        if not templates:
            continue
        existing = {
            row.instance_task_id: row
            for row in db.query(CohortTaskState)
            .filter(CohortTaskState.cohort_id == instance.cohort_id, CohortTaskState.day_index == day_index)
            .all()
        }
        task_date = calendar_date_for_day(instance.start_date, day_index, instance.include_weekends)
        for template in templates:
            state = existing.get(template.id)
            if state is None:
                state = _new_state(
                    cohort_id=instance.cohort_id,
                    instance_id=instance.id,
                    program_id=instance.program_id,
                    organization_id=instance.organization_id,
                    day_index=day_index,
                    instance_task_id=template.id,
                    title=template.label,
                    task_date=task_date,
                    member_ids=member_ids,
                )
                recalculate_aggregates(state, threshold)
                db.add(state)
                existing[template.id] = state
                counts.created += 1
                continue

            members = copy.deepcopy(state.member_states or {})
            changed = False
            for key in wanted:
                entry = members.get(key)
                if entry is None:
                    members[key] = {"status": PENDING}
                    changed = True
                elif entry.get("removed"):
                    entry.pop("removed")
                    changed = True
            if prune:
                for key, entry in members.items():
                    if key not in wanted and not entry.get("removed"):
                        entry["removed"] = True
                        changed = True
            if changed:
                state.member_states = members
                recalculate_aggregates(state, threshold)
                db.add(state)
                counts.updated += 1
    db.flush()
    if counts.created or counts.updated:
        logger.info(
            "Cohort %s task states: created=%s updated=%s",
            instance.cohort_id,
            counts.created,
            counts.updated,
        )
    return counts


def _lookup_state(db: Session, cohort_id: UUID, task: Task) -> Optional[CohortTaskState]:
    query = db.query(CohortTaskState).filter(
        CohortTaskState.cohort_id == cohort_id,
        CohortTaskState.day_index == task.day_index,
    )
    if task.instance_task_id:
        state = query.filter(CohortTaskState.instance_task_id == task.instance_task_id).one_or_none()
        if state is not None:
            return state
    # Rows written before the task was re-keyed still match on title.
    return query.filter(CohortTaskState.title == task.title).first()


def record_member_task_status(db: Session, task: Task, *, now: Optional[datetime] = None) -> Optional[CohortTaskState]:
    """Reflect a member's task status in their cohort's rollup.

    Returns ``None`` for tasks that do not come from a cohort program. A
    missing rollup is created on the spot. The caller commits.
    """
    if task.source != PROGRAM_SOURCE or not task.enrollment_id or task.day_index is None:
        return None
    enrollment = db.get(ProgramEnrollment, task.enrollment_id)
    if enrollment is None or enrollment.cohort_id is None:
        return None

    state = _lookup_state(db, enrollment.cohort_id, task)
    if state is None:
        instance = db.query(ProgramInstance).filter(ProgramInstance.cohort_id == enrollment.cohort_id).one_or_none()
        if instance is None or not task.instance_task_id:
            logger.warning("No cohort rollup for task %s and none can be created", task.id)
            return None
        state = _new_state(
            cohort_id=enrollment.cohort_id,
            instance_id=instance.id,
            program_id=instance.program_id,
            organization_id=instance.organization_id,
            day_index=task.day_index,
            instance_task_id=task.instance_task_id,
            title=task.title,
            task_date=calendar_date_for_day(instance.start_date, task.day_index, instance.include_weekends is not False),
            member_ids=cohort_member_ids(db, enrollment.cohort_id),
        )
        logger.info("Created cohort rollup for task %s on day %s", task.instance_task_id, task.day_index)

    completed = task.status == COMPLETED
    members = copy.deepcopy(state.member_states or {})
    entry = members.setdefault(str(task.user_id), {})
    entry["status"] = COMPLETED if completed else PENDING
    entry["completed_at"] = (task.completed_at or now or datetime.now(timezone.utc)).isoformat() if completed else None
    entry["task_id"] = str(task.id)
    state.member_states = members
    recalculate_aggregates(state, completion_threshold(db, state.program_id))
    db.add(state)
    db.flush()
    return state
