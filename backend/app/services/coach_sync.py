"""Push coach template edits through to members' materialized tasks."""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.core.errors import DataIntegrityError, NotFoundError, SyncError
from app.db.models.organization import OrganizationSettings
from app.db.models.program import Program, ProgramEnrollment
from app.db.models.program_instance import ProgramInstance
from app.db.models.task import Task
from app.db.write_batch import WriteBatch
from app.services.calendar import local_date, program_day_for_date, resolve_zone
from app.services.cohort_task_state import MEMBER_STATUSES, ensure_cohort_task_states
from app.services.instance_materializer import InstanceView
from app.services.program_templates import template_from_model
from app.services.sync_context import build_sync_context
from app.services.task_sync import PROGRAM_SOURCE, SyncMode, resolve_task_date, sync_instance_days
from app.services.week_distribution import WeekDistributionResult, redistribute_instance_week

logger = logging.getLogger(__name__)

EDIT_MODES = (SyncMode.FILL_EMPTY, SyncMode.OVERRIDE_PROGRAM_SOURCED)


@dataclass(frozen=True)
class Member:
    user_id: UUID
    enrollment_id: Optional[UUID]


@dataclass
class MemberSyncSummary:
    members_processed: int = 0
    members_failed: int = 0
    tasks_created: int = 0
    tasks_replaced: int = 0
    cohort_states: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class WeekEditOutcome:
    instance_id: UUID
    week_number: int
    distributed: WeekDistributionResult
    sync: MemberSyncSummary


@dataclass
class ClearTasksOutcome:
    instance_id: UUID
    members: int = 0
    deleted: int = 0


def instance_members(db: Session, instance: ProgramInstance) -> List[Member]:
    """Users whose tasks come from ``instance``."""
    if instance.type != "cohort":
        if instance.user_id:
            return [Member(instance.user_id, instance.enrollment_id)]
        enrollment = db.get(ProgramEnrollment, instance.enrollment_id) if instance.enrollment_id else None
        return [Member(enrollment.user_id, enrollment.id)] if enrollment else []

    rows = (
        db.query(ProgramEnrollment)
        .filter(
            ProgramEnrollment.cohort_id == instance.cohort_id,
            ProgramEnrollment.status.in_(MEMBER_STATUSES),
        )
        .order_by(ProgramEnrollment.created_at.asc())
        .all()
    )
    return [Member(row.user_id, row.id) for row in rows]


def _fallback_policies(db: Session, instance: ProgramInstance) -> Tuple[Optional[str], Optional[str]]:
    program = db.get(Program, instance.program_id)
    org_settings = db.get(OrganizationSettings, instance.organization_id)
    return (
        program.default_distribution if program else None,
        org_settings.default_distribution if org_settings else None,
    )


def _week_bounds(view: InstanceView, week_number: int) -> Tuple[int, int]:
    for week in view.weeks:
        if week.get("week_number") == week_number:
            return int(week["start_day_index"]), int(week["end_day_index"])
    raise NotFoundError(f"Week {week_number} not found in instance {view.id}")


def horizon_days(
    view: InstanceView,
    *,
    today: date,
    horizon: int,
    first_day_index: int,
    last_day_index: int,
) -> List[Tuple[int, date]]:
    """``(day_index, task_date)`` pairs from ``today`` over ``horizon`` days within a day range."""
    days = []
    for offset in range(max(horizon, 0)):
        member_date = today + timedelta(days=offset)
        day_index = program_day_for_date(view.start_date, member_date, view.include_weekends)
        if day_index is None or not first_day_index <= day_index <= last_day_index:
            continue
        days.append((day_index, resolve_task_date(view, day_index, member_date)))
    return days


def sync_members(
    db: Session,
    instance: ProgramInstance,
    *,
    mode: SyncMode,
    horizon: int,
    now: datetime,
    config: Settings,
    first_day_index: int = 1,
    last_day_index: Optional[int] = None,
) -> MemberSyncSummary:
    """Sync every member of ``instance`` over the horizon; one member's failure never stops the rest."""
    summary = MemberSyncSummary()
    view = InstanceView.from_model(instance)
    last_day_index = last_day_index if last_day_index is not None else view.last_day_index
    members = instance_members(db, instance)
    context = build_sync_context(
        db,
        settings=config,
        now=now,
        user_ids=[member.user_id for member in members],
        organization_ids=[view.organization_id],
    )
    focus_limit = context.focus_limit_for(view.organization_id)
    synced_days: set[int] = set()

    for member in members:
        try:
            today = local_date(now, resolve_zone(context.timezone_for(member.user_id)))
            days = horizon_days(
                view,
                today=today,
                horizon=horizon,
                first_day_index=first_day_index,
                last_day_index=last_day_index,
            )
            result = sync_instance_days(
                db,
                view,
                user_id=member.user_id,
                days=days,
                focus_limit=focus_limit,
                mode=mode,
                enrollment_id=member.enrollment_id,
                batch_limit=context.write_batch_limit,
            )
        except Exception as exc:
            db.rollback()
            summary.members_failed += 1
            summary.errors.append({"user_id": str(member.user_id), "error": str(exc) or exc.__class__.__name__})
            logger.exception("Coach sync failed for user %s on instance %s", member.user_id, view.id)
            continue
        summary.members_processed += 1
        summary.tasks_created += result.created
        summary.tasks_replaced += result.replaced
        synced_days.update(day.day_index for day in result.days)

    if view.is_cohort and synced_days:
        try:
            counts = ensure_cohort_task_states(
                db,
                view,
                synced_days,
                [member.user_id for member in members],
                prune=True,
            )
            db.commit()
            summary.cohort_states = counts.created
        except (SyncError, SQLAlchemyError) as exc:
            db.rollback()
            summary.errors.append({"cohort_id": str(view.cohort_id), "error": str(exc) or exc.__class__.__name__})
            logger.exception("Cohort task states failed for instance %s", view.id)
    return summary


def apply_instance_week_edit(
    db: Session,
    instance: ProgramInstance,
    week_number: int,
    *,
    weekly_tasks: Optional[Sequence[Any]] = None,
    distribution: Optional[str] = None,
    mode: SyncMode = SyncMode.FILL_EMPTY,
    horizon: Optional[int] = None,
    overwrite_existing: bool = False,
    now: Optional[datetime] = None,
    config: Optional[Settings] = None,
) -> WeekEditOutcome:
    """Edit one instance week, commit it, then sync members' tasks for that week.

    The template change is committed before any member is synced, so the
    response can report distribution and member sync separately.
    """
    if mode not in EDIT_MODES:
        raise ValueError(f"Unsupported coach sync mode: {mode}")
    config = config or default_settings
    now = now or datetime.now(timezone.utc)
    horizon = config.coach_sync_horizon_days if horizon is None else horizon

    try:
        distributed = redistribute_instance_week(
            db,
            instance,
            week_number,
            weekly_tasks=weekly_tasks,
            distribution=distribution,
            overwrite_existing=overwrite_existing,
            fallback_policies=_fallback_policies(db, instance),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(instance)

    view = InstanceView.from_model(instance)
    first_day, last_day = _week_bounds(view, week_number)
    sync = sync_members(
        db,
        instance,
        mode=mode,
        horizon=horizon,
        now=now,
        config=config,
        first_day_index=first_day,
        last_day_index=last_day,
    )
    logger.info(
        "Week %s of instance %s edited: recomputed=%s members=%s failed=%s created=%s replaced=%s",
        week_number,
        instance.id,
        len(distributed.recomputed_days),
        sync.members_processed,
        sync.members_failed,
        sync.tasks_created,
        sync.tasks_replaced,
    )
    return WeekEditOutcome(instance_id=instance.id, week_number=week_number, distributed=distributed, sync=sync)


def _update_program_week(program: Program, week_number: int, weekly_tasks, distribution) -> None:
    weeks = copy.deepcopy(program.weeks or [])
    week = next((item for item in weeks if item.get("week_number") == week_number), None)
    if week is None:
        week = {"week_number": week_number}
        weeks.append(week)
    if weekly_tasks is not None:
        week["weekly_tasks"] = list(weekly_tasks)
    if distribution is not None:
        week["distribution"] = distribution
    program.weeks = sorted(weeks, key=lambda item: item.get("week_number", 0))


def apply_program_week_edit(
    db: Session,
    program_id: UUID,
    week_number: int,
    *,
    weekly_tasks: Optional[Sequence[Any]] = None,
    distribution: Optional[str] = None,
    mode: SyncMode = SyncMode.FILL_EMPTY,
    horizon: Optional[int] = None,
    overwrite_existing: bool = False,
    now: Optional[datetime] = None,
    config: Optional[Settings] = None,
) -> List[WeekEditOutcome]:
    """Edit the program template week, then apply the same edit to every active instance."""
    program = db.get(Program, program_id)
    if program is None:
        raise NotFoundError(f"Program {program_id} not found")

    try:
        _update_program_week(program, week_number, weekly_tasks, distribution)
        # Reject edits that leave the template unreadable before anything is written.
        template_from_model(program)
        db.add(program)
        db.commit()
    except Exception:
        db.rollback()
        raise

    instances = (
        db.query(ProgramInstance)
        .filter(ProgramInstance.program_id == program_id, ProgramInstance.status == "active")
        .order_by(ProgramInstance.created_at.asc())
        .all()
    )
    outcomes = []
    for instance in instances:
        try:
            outcomes.append(
                apply_instance_week_edit(
                    db,
                    instance,
                    week_number,
                    weekly_tasks=weekly_tasks,
                    distribution=distribution,
                    mode=mode,
                    horizon=horizon,
                    overwrite_existing=overwrite_existing,
                    now=now,
                    config=config,
                )
            )
        except (NotFoundError, DataIntegrityError) as exc:
            logger.warning("Skipping instance %s for program week edit: %s", instance.id, exc)
    return outcomes


def clear_program_tasks(
    db: Session,
    instance: ProgramInstance,
    *,
    now: Optional[datetime] = None,
    config: Optional[Settings] = None,
) -> ClearTasksOutcome:
    """Delete members' future program tasks that are still pending and unlocked.

    Today (in each member's timezone), completed and locked rows are kept.
    """
    config = config or default_settings
    now = now or datetime.now(timezone.utc)
    members = instance_members(db, instance)
    context = build_sync_context(db, settings=config, now=now, user_ids=[member.user_id for member in members])
    outcome = ClearTasksOutcome(instance_id=instance.id, members=len(members))

    with WriteBatch(db, limit=context.write_batch_limit) as batch:
        for member in members:
            today = local_date(now, resolve_zone(context.timezone_for(member.user_id)))
            rows = (
                db.query(Task)
                .filter(
                    Task.user_id == member.user_id,
                    Task.instance_id == instance.id,
                    Task.source == PROGRAM_SOURCE,
                    Task.status == "pending",
                    Task.client_locked.is_(False),
                    Task.date > today,
                )
                .all()
            )
            for row in rows:
                batch.delete(row)
            outcome.deleted += len(rows)

    logger.info("Cleared %s future program tasks for %s members of instance %s", outcome.deleted, outcome.members, instance.id)
    return outcome
