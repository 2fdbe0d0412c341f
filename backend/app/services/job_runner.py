"""Periodic reconciliation of program tasks and habits for active enrollments."""
from __future__ import annotations

import contextvars
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from time import perf_counter
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings, settings as default_settings
from app.core.context import sync_run_id_ctx_var
from app.core.errors import DataIntegrityError, FatalSyncError, SyncError
from app.db.models.program import ProgramEnrollment
from app.db.models.program_instance import ProgramInstance
from app.db.models.sync_run import SyncRun
from app.observability.metrics import log_counters
from app.observability.tracing import trace
from app.services.calendar import current_program_day, local_date, program_day_for_date, resolve_zone
from app.services.cohort_task_state import cohort_member_ids, ensure_cohort_task_states
from app.services.habit_sync import sync_module_habits
from app.services.instance_materializer import InstanceView
from app.services.orphan_reaper import reap_orphaned_tasks
from app.services.sync_context import ResolvedSyncContext, build_sync_context
from app.services.task_sync import SyncMode, day_has_program_tasks, resolve_task_date, sync_instance_day

logger = logging.getLogger(__name__)


@dataclass
class HabitCounters:
    created: int = 0
    updated: int = 0
    archived: int = 0


@dataclass
class ReconciliationSummary:
    run_id: str
    synced_today: int = 0
    synced_tomorrow: int = 0
    skipped: int = 0
    no_instance: int = 0
    data_integrity: int = 0
    errors: int = 0
    orphans_removed: int = 0
    cohort_states: int = 0
    habits: HabitCounters = field(default_factory=HabitCounters)
    duration_ms: float = 0.0

    def counters(self) -> Dict[str, float]:
        return {
            "synced_today": self.synced_today,
            "synced_tomorrow": self.synced_tomorrow,
            "skipped": self.skipped,
            "no_instance": self.no_instance,
            "data_integrity": self.data_integrity,
            "errors": self.errors,
            "orphans_removed": self.orphans_removed,
            "cohort_states": self.cohort_states,
            "habits_created": self.habits.created,
            "habits_updated": self.habits.updated,
            "habits_archived": self.habits.archived,
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class EnrollmentWork:
    enrollment_id: UUID
    user_id: UUID
    organization_id: UUID
    program_id: UUID
    cohort_id: Optional[UUID]
    started_at: date


@dataclass
class EnrollmentOutcome:
    enrollment_id: UUID
    synced_today: bool = False
    synced_tomorrow: bool = False
    skipped: int = 0
    no_instance: bool = False
    data_integrity: bool = False
    error: Optional[str] = None
    habits: HabitCounters = field(default_factory=HabitCounters)


def load_active_enrollments(db: Session, enrollment_ids: Optional[Iterable[UUID]] = None) -> List[EnrollmentWork]:
    """Active enrollments as detached work items; failure here aborts the run."""
    try:
        query = db.query(ProgramEnrollment).filter(ProgramEnrollment.status == "active")
        if enrollment_ids is not None:
            ids = list(dict.fromkeys(enrollment_ids))
            if not ids:
                return []
            query = query.filter(ProgramEnrollment.id.in_(ids))
        rows = query.order_by(ProgramEnrollment.created_at.asc()).all()
    except SQLAlchemyError as exc:
        raise FatalSyncError(f"Unable to load active enrollments: {exc}") from exc
    return [
        EnrollmentWork(
            enrollment_id=row.id,
            user_id=row.user_id,
            organization_id=row.organization_id,
            program_id=row.program_id,
            cohort_id=row.cohort_id,
            started_at=row.started_at,
        )
        for row in rows
    ]


@dataclass
class InstanceIndex:
    by_enrollment: Dict[UUID, InstanceView] = field(default_factory=dict)
    by_cohort: Dict[UUID, InstanceView] = field(default_factory=dict)
    valid_ids: Set[UUID] = field(default_factory=set)
    malformed_enrollments: Set[UUID] = field(default_factory=set)
    malformed_cohorts: Set[UUID] = field(default_factory=set)

    def lookup(self, work: EnrollmentWork) -> Tuple[Optional[InstanceView], bool]:
        """``(instance, malformed)``; the cohort instance wins over an individual one."""
        if work.cohort_id:
            if work.cohort_id in self.by_cohort:
                return self.by_cohort[work.cohort_id], False
            if work.cohort_id in self.malformed_cohorts:
                return None, True
        if work.enrollment_id in self.by_enrollment:
            return self.by_enrollment[work.enrollment_id], False
        return None, work.enrollment_id in self.malformed_enrollments


def load_instance_index(db: Session) -> InstanceIndex:
    """Index instances by enrollment and cohort; every existing id stays valid for the reaper."""
    index = InstanceIndex()
    for instance in db.query(ProgramInstance).all():
        index.valid_ids.add(instance.id)
        try:
            view = InstanceView.from_model(instance)
        except DataIntegrityError:
            logger.exception("Skipping malformed instance %s", instance.id)
            if instance.enrollment_id:
                index.malformed_enrollments.add(instance.enrollment_id)
            if instance.cohort_id:
                index.malformed_cohorts.add(instance.cohort_id)
            continue
        if instance.enrollment_id:
            index.by_enrollment[instance.enrollment_id] = view
        if instance.cohort_id:
            index.by_cohort[instance.cohort_id] = view
    return index


def process_enrollment(
    session_factory: sessionmaker,
    work: EnrollmentWork,
    instance: Optional[InstanceView],
    context: ResolvedSyncContext,
) -> EnrollmentOutcome:
    """Sync today, then tomorrow, then habits for one enrollment on its own session."""
    outcome = EnrollmentOutcome(enrollment_id=work.enrollment_id)
    if instance is None:
        outcome.no_instance = True
        return outcome
    if instance.status != "active":
        outcome.skipped += 1
        return outcome

    zone = resolve_zone(context.timezone_for(work.user_id))
    focus_limit = context.focus_limit_for(instance.organization_id)
    db = session_factory()
    try:
        with trace(
            "program_sync.enrollment",
            metadata={"enrollment_id": str(work.enrollment_id), "instance_id": str(instance.id)},
            user_id=str(work.user_id),
        ):
            today = local_date(context.now, zone)
            for offset, attr in ((0, "synced_today"), (1, "synced_tomorrow")):
                member_date = today + timedelta(days=offset)
                day_index = program_day_for_date(instance.start_date, member_date, instance.include_weekends)
                if day_index is None or day_index > instance.last_day_index:
                    outcome.skipped += 1
                    continue
                if day_has_program_tasks(db, instance_id=instance.id, user_id=work.user_id, day_index=day_index):
                    outcome.skipped += 1
                    continue
                sync_instance_day(
                    db,
                    instance,
                    user_id=work.user_id,
                    day_index=day_index,
                    task_date=resolve_task_date(instance, day_index, member_date),
                    focus_limit=focus_limit,
                    mode=SyncMode.CREATE_MISSING,
                    enrollment_id=work.enrollment_id,
                    batch_limit=context.write_batch_limit,
                )
                setattr(outcome, attr, True)

            modules = instance.module_ranges()
            if modules:
                current = current_program_day(instance.start_date, zone, context.now, instance.include_weekends)
                habit_result = sync_module_habits(
                    db,
                    user_id=work.user_id,
                    organization_id=work.organization_id,
                    program_id=instance.program_id,
                    modules=modules,
                    day_index=current.day_index,
                    max_habits=context.max_module_habits,
                    batch_limit=context.write_batch_limit,
                )
                outcome.habits = HabitCounters(habit_result.created, habit_result.updated, habit_result.archived)
    except DataIntegrityError as exc:
        db.rollback()
        outcome.data_integrity = True
        logger.warning("Skipping enrollment %s: %s", work.enrollment_id, exc)
    except Exception as exc:
        db.rollback()
        outcome.error = str(exc) or exc.__class__.__name__
        logger.exception("Program sync failed for enrollment %s (user %s)", work.enrollment_id, work.user_id)
    finally:
        db.close()
    return outcome


def _merge(summary: ReconciliationSummary, outcome: EnrollmentOutcome) -> None:
    if outcome.error:
        summary.errors += 1
    if outcome.no_instance:
        summary.no_instance += 1
    if outcome.data_integrity:
        summary.data_integrity += 1
    summary.synced_today += int(outcome.synced_today)
    summary.synced_tomorrow += int(outcome.synced_tomorrow)
    summary.skipped += outcome.skipped
    summary.habits.created += outcome.habits.created
    summary.habits.updated += outcome.habits.updated
    summary.habits.archived += outcome.habits.archived


def _chunks(items: List[EnrollmentWork], size: int) -> Iterable[List[EnrollmentWork]]:
    size = max(size, 1)
    for start in range(0, len(items), size):
        yield items[start : start + size]


def run_program_sync(
    session_factory: sessionmaker,
    *,
    now: Optional[datetime] = None,
    trigger: str = "manual",
    enrollment_ids: Optional[Iterable[UUID]] = None,
    config: Optional[Settings] = None,
    max_workers: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ReconciliationSummary:
    """Run one reconciliation pass over active enrollments.

    Per-enrollment failures and a failed orphan cleanup are counted and
    logged. Only failing to load the run's inputs (enrollments, instances,
    timezones and limits) raises :class:`FatalSyncError`; the run is then
    recorded as failed.
    """
    config = config or default_settings
    now = now or datetime.now(timezone.utc)
    workers = max_workers if max_workers is not None else config.sync_max_workers
    summary = ReconciliationSummary(run_id=uuid4().hex)
    token = sync_run_id_ctx_var.set(summary.run_id)
    started_at = datetime.now(timezone.utc)
    start = perf_counter()
    db = session_factory()
    try:
        with trace("program_sync.run", metadata={"trigger": trigger}):
            try:
                enrollments = load_active_enrollments(db, enrollment_ids)
                index, context = _load_run_inputs(db, enrollments, config=config, now=now)
            except FatalSyncError as exc:
                db.rollback()
                _record_run(db, summary, trigger=trigger, status="failed", started_at=started_at, error=str(exc))
                logger.error("Program sync aborted: %s", exc)
                raise

            if enrollment_ids is None:
                _reap_orphans(db, index.valid_ids, summary, config=config)

            logger.info(
                "Program sync started (trigger=%s, enrollments=%s, instances=%s)",
                trigger,
                len(enrollments),
                len(index.valid_ids),
            )
            batches = list(_chunks(enrollments, config.sync_batch_size))
            for position, batch in enumerate(batches):
                for outcome in _run_batch(session_factory, batch, index, context, workers):
                    _merge(summary, outcome)
                if position < len(batches) - 1 and config.sync_batch_pause_seconds > 0:
                    sleep(config.sync_batch_pause_seconds)

            _refresh_cohort_states(db, enrollments, index, context, summary)

            summary.duration_ms = round((perf_counter() - start) * 1000, 2)
            _record_run(db, summary, trigger=trigger, status="succeeded", started_at=started_at)
    finally:
        db.close()
        sync_run_id_ctx_var.reset(token)

    log_counters("program_sync", summary.counters(), metadata={"trigger": trigger})
    logger.info(
        "Program sync complete: today=%s tomorrow=%s skipped=%s no_instance=%s data_integrity=%s errors=%s "
        "orphans=%s cohort_states=%s habits(created=%s updated=%s archived=%s) in %.0fms",
        summary.synced_today,
        summary.synced_tomorrow,
        summary.skipped,
        summary.no_instance,
        summary.data_integrity,
        summary.errors,
        summary.orphans_removed,
        summary.cohort_states,
        summary.habits.created,
        summary.habits.updated,
        summary.habits.archived,
        summary.duration_ms,
    )
    return summary


def _load_run_inputs(
    db: Session,
    enrollments: List[EnrollmentWork],
    *,
    config: Settings,
    now: datetime,
) -> Tuple[InstanceIndex, ResolvedSyncContext]:
    try:
        index = load_instance_index(db)
        context = build_sync_context(
            db,
            settings=config,
            now=now,
            user_ids=[work.user_id for work in enrollments],
            organization_ids={work.organization_id for work in enrollments},
        )
    except SQLAlchemyError as exc:
        raise FatalSyncError(f"Unable to load instances or sync settings: {exc}") from exc
    return index, context


def _reap_orphans(db: Session, valid_ids: Set[UUID], summary: ReconciliationSummary, *, config: Settings) -> None:
    """Orphan cleanup is best effort; a failure is counted and the next run retries."""
    try:
        summary.orphans_removed = reap_orphaned_tasks(db, valid_ids, batch_limit=config.write_batch_limit)
        db.commit()
    except (SyncError, SQLAlchemyError):
        db.rollback()
        summary.errors += 1
        logger.exception("Orphan cleanup failed; continuing with enrollments")


def _cohort_days(
    enrollments: List[EnrollmentWork],
    index: InstanceIndex,
    context: ResolvedSyncContext,
) -> Dict[UUID, Tuple[InstanceView, Set[int]]]:
    """Program days each cohort's members reached today or tomorrow in their own timezone."""
    days: Dict[UUID, Tuple[InstanceView, Set[int]]] = {}
    for work in enrollments:
        instance = index.by_cohort.get(work.cohort_id) if work.cohort_id else None
        if instance is None or instance.status != "active":
            continue
        _, indices = days.setdefault(work.cohort_id, (instance, set()))
        today = local_date(context.now, resolve_zone(context.timezone_for(work.user_id)))
        for offset in (0, 1):
            day_index = program_day_for_date(instance.start_date, today + timedelta(days=offset), instance.include_weekends)
            if day_index is not None and day_index <= instance.last_day_index:
                indices.add(day_index)
    return days


def _refresh_cohort_states(
    db: Session,
    enrollments: List[EnrollmentWork],
    index: InstanceIndex,
    context: ResolvedSyncContext,
    summary: ReconciliationSummary,
) -> None:
    """Create cohort rollups for the days just synced; one cohort failing never stops the rest."""
    for cohort_id, (instance, day_indices) in _cohort_days(enrollments, index, context).items():
        if not day_indices:
            continue
        try:
            counts = ensure_cohort_task_states(db, instance, day_indices, cohort_member_ids(db, cohort_id), prune=True)
            db.commit()
        except (SyncError, SQLAlchemyError):
            db.rollback()
            summary.errors += 1
            logger.exception("Cohort task states failed for cohort %s", cohort_id)
            continue
        summary.cohort_states += counts.created


def _run_batch(
    session_factory: sessionmaker,
    batch: List[EnrollmentWork],
    index: InstanceIndex,
    context: ResolvedSyncContext,
    workers: int,
) -> List[EnrollmentOutcome]:
    outcomes: List[EnrollmentOutcome] = []
    jobs = []
    for work in batch:
        instance, malformed = index.lookup(work)
        if malformed:
            outcomes.append(EnrollmentOutcome(enrollment_id=work.enrollment_id, data_integrity=True))
        else:
            jobs.append((work, instance))

    if workers <= 1 or len(jobs) <= 1:
        outcomes.extend(process_enrollment(session_factory, work, instance, context) for work, instance in jobs)
        return outcomes

    with ThreadPoolExecutor(max_workers=min(workers, len(jobs)), thread_name_prefix="program-sync") as executor:
        # Each worker gets a copy of the run's context so log lines keep the run id.
        futures = [
            executor.submit(contextvars.copy_context().run, process_enrollment, session_factory, work, instance, context)
            for work, instance in jobs
        ]
        outcomes.extend(future.result() for future in futures)
    return outcomes


def _record_run(
    db: Session,
    summary: ReconciliationSummary,
    *,
    trigger: str,
    status: str,
    started_at: datetime,
    error: Optional[str] = None,
) -> None:
    payload = asdict(summary)
    try:
        db.add(
            SyncRun(
                id=UUID(summary.run_id),
                trigger=trigger,
                status=status,
                summary=payload,
                error=(error or "")[:500] or None,
                started_at=started_at,
                finished_at=datetime.now(timezone.utc),
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Unable to record program sync run %s", summary.run_id)
