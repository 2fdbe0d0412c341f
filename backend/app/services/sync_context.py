"""Run-scoped context resolved once per reconciliation run."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.db.models.organization import OrganizationSettings
from app.db.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class ResolvedSyncContext:
    """Defaults and bulk-loaded lookups shared by every enrollment in a run."""

    now: datetime
    default_focus_slots: int = 3
    default_timezone: str = "UTC"
    max_module_habits: int = 3
    write_batch_limit: int = 500
    user_timezones: Dict[UUID, Optional[str]] = field(default_factory=dict)
    org_focus_limits: Dict[UUID, int] = field(default_factory=dict)
    org_distributions: Dict[UUID, str] = field(default_factory=dict)

    def timezone_for(self, user_id: UUID) -> str:
        return self.user_timezones.get(user_id) or self.default_timezone

    def focus_limit_for(self, organization_id: Optional[UUID]) -> int:
        if organization_id is None:
            return self.default_focus_slots
        return self.org_focus_limits.get(organization_id, self.default_focus_slots)

    def distribution_for(self, organization_id: Optional[UUID]) -> Optional[str]:
        if organization_id is None:
            return None
        return self.org_distributions.get(organization_id)


def build_sync_context(
    db: Session,
    *,
    settings: Settings,
    now: datetime,
    user_ids: Iterable[UUID] = (),
    organization_ids: Iterable[UUID] = (),
) -> ResolvedSyncContext:
    """Prefetch timezones and organization limits in bulk.

    Missing rows fall back to the configured defaults instead of failing.
    """
    context = ResolvedSyncContext(
        now=now,
        default_focus_slots=settings.default_focus_slots,
        default_timezone=settings.default_timezone,
        max_module_habits=settings.max_module_habits,
        write_batch_limit=settings.write_batch_limit,
    )

    user_ids = list(dict.fromkeys(user_ids))
    if user_ids:
        rows = db.query(User.id, User.timezone).filter(User.id.in_(user_ids)).all()
        context.user_timezones = {row[0]: row[1] for row in rows}

    organization_ids = list(dict.fromkeys(organization_ids))
    if organization_ids:
        rows = db.query(OrganizationSettings).filter(OrganizationSettings.organization_id.in_(organization_ids)).all()
        for row in rows:
            if row.daily_focus_slots is not None and row.daily_focus_slots >= 0:
                context.org_focus_limits[row.organization_id] = row.daily_focus_slots
            if row.default_distribution:
                context.org_distributions[row.organization_id] = row.default_distribution

    missing_orgs = len(organization_ids) - len(context.org_focus_limits)
    if missing_orgs:
        logger.debug("%s organizations without a focus-slot setting use the default of %s", missing_orgs, context.default_focus_slots)
    return context
