"""Timezone-aware calendar arithmetic for program days.

Day indices are 1-based: the enrollment start date is day 1. When a program
excludes weekends, only Monday-Friday advance the index.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")
_MIDDAY = time(12, 0)


@dataclass(frozen=True)
class ProgramDay:
    day_index: int
    date: date

    @property
    def date_str(self) -> str:
        return format_date(self.date)


def resolve_zone(name: Optional[str]) -> ZoneInfo:
    """Return the zone for an IANA name, falling back to UTC. Never raises."""
    if not name or not isinstance(name, str):
        return UTC
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.debug("Unknown timezone %r, falling back to UTC", name)
        return UTC


def local_date(now: datetime, tz: Union[str, ZoneInfo, None]) -> date:
    """Calendar date of ``now`` in ``tz``; naive datetimes are treated as UTC."""
    zone = tz if isinstance(tz, ZoneInfo) else resolve_zone(tz)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(zone).date()


def format_date(value: date) -> str:
    return value.isoformat()


def parse_date(value: str) -> date:
    return date.fromisoformat(value.split("T", 1)[0])


def normalize_start(value: Union[date, datetime, str], zone: Optional[ZoneInfo] = None) -> date:
    """Reduce a start value to a calendar date.

    Naive datetimes are anchored at midday in ``zone`` before conversion so a
    daylight-saving shift can never move them across a date boundary.
    """
    zone = zone or UTC
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = datetime.combine(value.date(), _MIDDAY, tzinfo=zone)
        return value.astimezone(zone).date()
    if isinstance(value, date):
        return value
    return parse_date(value)


def is_weekend(value: date) -> bool:
    return value.weekday() >= 5


def day_index_between(start: date, target: date, include_weekends: bool = True) -> int:
    """Day index of ``target`` relative to ``start``, clamped to at least 1."""
    if target <= start:
        return 1
    if include_weekends:
        return (target - start).days + 1

    index = 0
    cursor = start
    while cursor <= target:
        if not is_weekend(cursor):
            index += 1
        cursor += timedelta(days=1)
    return max(index, 1)


def program_day_for_date(start: date, target: date, include_weekends: bool = True) -> Optional[int]:
    """Day index for ``target`` or None when no program day falls on it."""
    if target < start:
        return None
    if not include_weekends and is_weekend(target):
        return None
    return day_index_between(start, target, include_weekends)


def calendar_date_for_day(start: date, day_index: int, include_weekends: bool = True) -> date:
    """Inverse of :func:`day_index_between` for days that exist in the program."""
    if day_index < 1:
        raise ValueError("day_index must be >= 1")
    if include_weekends:
        return start + timedelta(days=day_index - 1)

    cursor = start
    while is_weekend(cursor):
        cursor += timedelta(days=1)
    remaining = day_index - 1
    while remaining:
        cursor += timedelta(days=1)
        if not is_weekend(cursor):
            remaining -= 1
    return cursor


def current_program_day(
    started_at: Union[date, datetime, str],
    tz: Union[str, ZoneInfo, None],
    now: datetime,
    include_weekends: bool = True,
    *,
    offset_days: int = 0,
) -> ProgramDay:
    """Day index and local date for ``now`` (shifted by ``offset_days``) in the user's zone."""
    zone = tz if isinstance(tz, ZoneInfo) else resolve_zone(tz)
    start = normalize_start(started_at, zone)
    today = local_date(now, zone) + timedelta(days=offset_days)
    return ProgramDay(day_index=day_index_between(start, today, include_weekends), date=today)


def calendar_week_spans(start: date, length_days: int, include_weekends: bool = True) -> List[Tuple[int, int]]:
    """``(start_day_index, end_day_index)`` of each calendar week the program touches.

    Week 1 runs from the start to the end of its calendar week (Sunday, or
    Friday for weekday-only programs), so a mid-week start gets a short first
    week. Later weeks begin on Monday and the last one is cut at the program
    length. Weekend starts in a weekday-only program roll to Monday.
    """
    if length_days < 1:
        return []
    if not include_weekends:
        while is_weekend(start):
            start += timedelta(days=1)
        first = 5 - start.weekday()
        per_week = 5
    else:
        first = 7 - start.weekday()
        per_week = 7

    spans = [(1, min(first, length_days))]
    cursor = spans[0][1] + 1
    while cursor <= length_days:
        end = min(cursor + per_week - 1, length_days)
        spans.append((cursor, end))
        cursor = end + 1
    return spans
