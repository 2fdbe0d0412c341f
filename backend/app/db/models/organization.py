"""Organization settings ORM model."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class OrganizationSettings(Base):
    __tablename__ = "organization_settings"

    organization_id = Column(UUID(as_uuid=True), primary_key=True)
    daily_focus_slots = Column(Integer, nullable=True)
    default_distribution = Column(String(length=32), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
