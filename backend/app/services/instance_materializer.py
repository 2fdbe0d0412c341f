"""Materialize program templates into per-enrollment or per-cohort instances."""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from app.api.schemas.program import HabitTemplate, ProgramTemplate
from app.core.errors import DataIntegrityError, NotFoundError
from app.db.models.organization import OrganizationSettings
from app.db.models.program import Program, ProgramCohort, ProgramEnrollment
from app.db.models.program_instance import ProgramInstance
from app.services.calendar import calendar_date_for_day, format_date, parse_date
from app.services.program_templates import (
    ModuleRange,
    layout_modules,
    layout_weeks,
    module_for_day,
    template_from_model,
)
from app.services.week_distribution import (
    distribute_week,
    resolve_policy,
    task_document,
    with_stable_ids,
)

logger = logging.getLogger(__name__)

INDIVIDUAL = "individual"
COHORT = "cohort"


@dataclass
class InstanceView:
    """Detached, read-only view of an instance.

    Reconciliation workers run on their own sessions and threads, so they get
    this snapshot instead of an ORM object bound to the driver's session.
    """

    id: UUID
    type: str
    program_id: UUID
    organization_id: UUID
    start_date: date
    include_weekends: bool
    status: str
    weeks: List[Dict[str, Any]]
    modules: List[Dict[str, Any]]
    enrollment_id: Optional[UUID] = None
    cohort_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    _days: Dict[int, Dict[str, Any]] = field(default_factory=dict, repr=False)

    @classmethod
    def from_model(cls, instance: ProgramInstance) -> "InstanceView":
        view = cls(
            id=instance.id,
            type=instance.type,
            program_id=instance.program_id,
            organization_id=instance.organization_id,
            start_date=instance.start_date,
            include_weekends=instance.include_weekends is not False,
            status=instance.status or "active",
            weeks=copy.deepcopy(instance.weeks or []),
            modules=copy.deepcopy(instance.modules or []),
            enrollment_id=instance.enrollment_id,
            cohort_id=instance.cohort_id,
            user_id=instance.user_id,
        )
        for week in view.weeks:
            for day in week.get("days") or []:
                if not isinstance(day.get("global_day_index"), int):
                    raise DataIntegrityError(f"Instance {instance.id} has a day without global_day_index")
                view._days[day["global_day_index"]] = day
        return view

    @property
    def is_cohort(self) -> bool:
        return self.type == COHORT

    @property
    def last_day_index(self) -> int:
        return max(self._days) if self._days else 0

    def day(self, global_day_index: int) -> Optional[Dict[str, Any]]:
        return self._days.get(global_day_index)

    def module_ranges(self) -> List[ModuleRange]:
        ranges = []
        for module in self.modules:
            try:
                ranges.append(
                    ModuleRange(
                        id=module["id"],
                        name=module.get("name"),
                        start_day_index=int(module["start_day_index"]),
                        end_day_index=int(module["end_day_index"]),
                        habits=[HabitTemplate.model_validate(habit) for habit in module.get("habits") or []],
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise DataIntegrityError(f"Instance {self.id} has a malformed module: {exc}") from exc
        return sorted(ranges, key=lambda module: module.start_day_index)


def build_instance_documents(
    template: ProgramTemplate,
    *,
    start_date: date,
    individual: bool,
    org_default_distribution: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Expand a template into instance ``weeks`` and ``modules`` documents.

    Weeks are aligned to calendar weeks from ``start_date``. Only individual
    instances get ``calendar_date`` on their days; cohort members resolve
    dates against their own timezone at sync time.
    """
    modules = layout_modules(template)
    weeks: List[Dict[str, Any]] = []

    for week_range in layout_weeks(template, start_date):
        week_template = week_range.template
        days = []
        for offset in range(week_range.day_count):
            global_index = week_range.start_day_index + offset
            days.append(
                {
                    "day_index": offset + 1,
                    "global_day_index": global_index,
                    "calendar_date": (
                        format_date(calendar_date_for_day(start_date, global_index, template.include_weekends))
                        if individual
                        else None
                    ),
                    "tasks": [],
                }
            )

        weekly_tasks = []
        if week_template:
            day_lookup = {day["global_day_index"]: day for day in days}
            for day_template in week_template.days:
                target = day_lookup.get(day_template.day_index)
                if target is None:
                    logger.warning(
                        "Program %s week %s lists day %s outside its range",
                        template.id,
                        week_range.week_number,
                        day_template.day_index,
                    )
                    continue
                for task in with_stable_ids(f"day/{day_template.day_index}", day_template.tasks):
                    target["tasks"].append(task_document(task, source="day"))
            weekly_tasks = with_stable_ids(f"week/{week_range.week_number}", week_template.weekly_tasks)

        module_id = week_template.module_id if week_template and week_template.module_id else None
        if module_id is None:
            module = module_for_day(modules, week_range.start_day_index)
            module_id = module.id if module else None

        week_doc = {
            "id": (week_template.id if week_template and week_template.id else f"week-{week_range.week_number}"),
            "week_number": week_range.week_number,
            "module_id": module_id,
            "name": week_template.name if week_template else None,
            "theme": week_template.theme if week_template else None,
            "distribution": week_template.distribution if week_template else None,
            "start_day_index": week_range.start_day_index,
            "end_day_index": week_range.end_day_index,
            "weekly_tasks": [task.model_dump(mode="json") for task in weekly_tasks],
            "days": days,
        }
        if weekly_tasks:
            policy = resolve_policy(week_doc["distribution"], template.default_distribution, org_default_distribution)
            week_doc, _ = distribute_week(week_doc, policy=policy)
        weeks.append(week_doc)

    module_docs = [
        {
            "id": module.id,
            "name": module.name,
            "start_day_index": module.start_day_index,
            "end_day_index": module.end_day_index,
            "habits": [habit.model_dump(mode="json") for habit in module.habits],
        }
        for module in modules
    ]
    return weeks, module_docs


def _org_default_distribution(db: Session, organization_id) -> Optional[str]:
    settings_row = db.get(OrganizationSettings, organization_id)
    return settings_row.default_distribution if settings_row else None


def ensure_enrollment_instance(
    db: Session,
    enrollment: ProgramEnrollment,
    *,
    rebuild: bool = False,
) -> Tuple[ProgramInstance, bool]:
    """Return the enrollment's instance, creating (or rebuilding) it when needed.

    Returns ``(instance, changed)``. The caller commits.
    """
    existing = db.query(ProgramInstance).filter(ProgramInstance.enrollment_id == enrollment.id).one_or_none()
    if existing and not rebuild:
        return existing, False

    program = db.get(Program, enrollment.program_id)
    if not program:
        raise NotFoundError(f"Program {enrollment.program_id} not found")
    template = template_from_model(program)
    weeks, modules = build_instance_documents(
        template,
        start_date=enrollment.started_at,
        individual=True,
        org_default_distribution=_org_default_distribution(db, program.organization_id),
    )
    instance = existing or ProgramInstance(
        program_id=program.id,
        organization_id=program.organization_id,
        type=INDIVIDUAL,
        enrollment_id=enrollment.id,
        user_id=enrollment.user_id,
    )
    instance.start_date = enrollment.started_at
    instance.include_weekends = template.include_weekends
    instance.status = "active"
    instance.weeks = weeks
    instance.modules = modules
    db.add(instance)
    db.flush()
    logger.info(
        "%s individual instance %s for enrollment %s (%s weeks)",
        "Rebuilt" if existing else "Created",
        instance.id,
        enrollment.id,
        len(weeks),
    )
    return instance, True


def ensure_cohort_instance(
    db: Session,
    cohort: ProgramCohort,
    *,
    rebuild: bool = False,
) -> Tuple[ProgramInstance, bool]:
    """Cohort counterpart of :func:`ensure_enrollment_instance`."""
    existing = db.query(ProgramInstance).filter(ProgramInstance.cohort_id == cohort.id).one_or_none()
    if existing and not rebuild:
        return existing, False

    program = db.get(Program, cohort.program_id)
    if not program:
        raise NotFoundError(f"Program {cohort.program_id} not found")
    if program.organization_id != cohort.organization_id:
        raise DataIntegrityError(f"Cohort {cohort.id} does not belong to the program's organization")
    template = template_from_model(program)
    start_date = cohort.start_date if isinstance(cohort.start_date, date) else parse_date(cohort.start_date)
    weeks, modules = build_instance_documents(
        template,
        start_date=start_date,
        individual=False,
        org_default_distribution=_org_default_distribution(db, program.organization_id),
    )
    instance = existing or ProgramInstance(
        program_id=program.id,
        organization_id=program.organization_id,
        type=COHORT,
        cohort_id=cohort.id,
    )
    instance.start_date = start_date
    instance.include_weekends = template.include_weekends
    instance.status = "active"
    instance.weeks = weeks
    instance.modules = modules
    db.add(instance)
    db.flush()
    logger.info(
        "%s cohort instance %s for cohort %s (%s weeks)",
        "Rebuilt" if existing else "Created",
        instance.id,
        cohort.id,
        len(weeks),
    )
    return instance, True
