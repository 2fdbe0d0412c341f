"""Program template store: loading, validation and day-range layout."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.api.schemas.program import HabitTemplate, ProgramTemplate, ProgramWeekTemplate
from app.core.errors import DataIntegrityError, NotFoundError
from app.db.models.program import Program
from app.services.calendar import calendar_week_spans

logger = logging.getLogger(__name__)


@dataclass
class ModuleRange:
    id: str
    name: Optional[str]
    start_day_index: int
    end_day_index: int
    habits: List[HabitTemplate] = field(default_factory=list)

    def contains(self, day_index: int) -> bool:
        return self.start_day_index <= day_index <= self.end_day_index


@dataclass
class WeekRange:
    week_number: int
    start_day_index: int
    end_day_index: int
    template: Optional[ProgramWeekTemplate] = None

    @property
    def day_count(self) -> int:
        return self.end_day_index - self.start_day_index + 1


def load_program_template(db: Session, program_id: UUID) -> ProgramTemplate:
    program = db.get(Program, program_id)
    if not program:
        raise NotFoundError(f"Program {program_id} not found")
    return template_from_model(program)


def template_from_model(program: Program) -> ProgramTemplate:
    try:
        return ProgramTemplate.model_validate(
            {
                "id": str(program.id),
                "organization_id": str(program.organization_id),
                "length_days": program.length_days or 28,
                "include_weekends": program.include_weekends is not False,
                "default_distribution": program.default_distribution,
                "modules": program.modules or [],
                "weeks": program.weeks or [],
            }
        )
    except ValidationError as exc:
        raise DataIntegrityError(f"Program {program.id} template is malformed: {exc}") from exc


def days_per_week(include_weekends: bool) -> int:
    return 7 if include_weekends else 5


def layout_weeks(template: ProgramTemplate, start_date: Optional[date] = None) -> List[WeekRange]:
    """Assign a day-index range to every week needed to cover the program.

    With a ``start_date`` weeks follow the calendar (see
    :func:`calendar_week_spans`); without one week n covers
    ``[(n-1)*k+1, n*k]`` clipped to the program length. Explicit ranges on a
    template week win either way. Weeks the template does not define are
    laid out empty.
    """
    length = template.length_days
    per_week = days_per_week(template.include_weekends)
    if start_date is not None:
        spans = calendar_week_spans(start_date, length, template.include_weekends)
    else:
        spans = [
            ((number - 1) * per_week + 1, min(number * per_week, length))
            for number in range(1, (length + per_week - 1) // per_week + 1)
        ]
    by_number = {week.week_number: week for week in template.weeks}
    total_weeks = max([len(spans), *by_number.keys()])

    ranges: List[WeekRange] = []
    for number in range(1, total_weeks + 1):
        week = by_number.get(number)
        start, end = spans[number - 1] if number <= len(spans) else (length + 1, length)
        if week and week.start_day_index and week.end_day_index:
            start, end = week.start_day_index, min(week.end_day_index, length)
        if start > length or end < start:
            if week:
                logger.warning(
                    "Week %s of program %s falls outside %s program days; ignoring",
                    number,
                    template.id,
                    length,
                )
            continue
        ranges.append(WeekRange(week_number=number, start_day_index=start, end_day_index=end, template=week))
    return ranges


def layout_modules(template: ProgramTemplate) -> List[ModuleRange]:
    """Resolve module day ranges.

    Modules with explicit ranges must be contiguous and non-overlapping from
    day 1. Modules without ranges split the program evenly and the last one
    absorbs the remainder.
    """
    modules = sorted(template.modules, key=lambda module: module.order)
    if not modules:
        return []

    explicit = [m for m in modules if m.start_day_index is not None and m.end_day_index is not None]
    if explicit and len(explicit) != len(modules):
        raise DataIntegrityError(f"Program {template.id} mixes modules with and without day ranges")

    if explicit:
        ranges = [
            ModuleRange(m.id, m.name, m.start_day_index, m.end_day_index, list(m.habits))
            for m in sorted(modules, key=lambda m: m.start_day_index)
        ]
        expected_start = 1
        for module in ranges:
            if module.start_day_index != expected_start or module.end_day_index < module.start_day_index:
                raise DataIntegrityError(
                    f"Program {template.id} module {module.id} range "
                    f"{module.start_day_index}-{module.end_day_index} is not contiguous"
                )
            expected_start = module.end_day_index + 1
        return ranges

    length = template.length_days
    size = max(length // len(modules), 1)
    ranges = []
    for position, module in enumerate(modules):
        start = position * size + 1
        end = length if position == len(modules) - 1 else min(start + size - 1, length)
        ranges.append(ModuleRange(module.id, module.name, min(start, length), end, list(module.habits)))
    return ranges


def module_for_day(modules: List[ModuleRange], day_index: int) -> Optional[ModuleRange]:
    """Module containing ``day_index``, clamped to the first or last module."""
    if not modules:
        return None
    for module in modules:
        if module.contains(day_index):
            return module
    if day_index < modules[0].start_day_index:
        return modules[0]
    if day_index > modules[-1].end_day_index:
        return modules[-1]
    # Gaps only come from hand-edited instance documents; pick the nearest start.
    return min(modules, key=lambda module: abs(module.start_day_index - day_index))
