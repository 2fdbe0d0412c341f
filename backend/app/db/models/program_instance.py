"""Program instance ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, Index, String, UniqueConstraint, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.db.types import JSONBCompat


class ProgramInstance(Base):
    """Materialized, date-resolved expansion of a program.

    One row per individual enrollment (``type='individual'``) or one shared row
    per cohort (``type='cohort'``). Enrollment and cohort references are plain
    columns rather than foreign keys: deleting either leaves the tasks pointing
    at this instance to the orphan reaper.
    """

    __tablename__ = "program_instances"
    __table_args__ = (
        UniqueConstraint("enrollment_id", name="uq_program_instances_enrollment_id"),
        UniqueConstraint("cohort_id", name="uq_program_instances_cohort_id"),
        Index("ix_program_instances_program_id", "program_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    program_id = Column(UUID(as_uuid=True), nullable=False)
    organization_id = Column(UUID(as_uuid=True), nullable=False)
    type = Column(String(length=16), nullable=False)
    enrollment_id = Column(UUID(as_uuid=True), nullable=True)
    cohort_id = Column(UUID(as_uuid=True), nullable=True)
    user_id = Column(UUID(as_uuid=True), nullable=True)
    start_date = Column(Date, nullable=False)
    include_weekends = Column(Boolean, nullable=False, server_default=sa_text("true"))
    status = Column(String(length=16), nullable=False, server_default=sa_text("'active'"))
    weeks = Column(JSONBCompat, nullable=False, default=list)
    modules = Column(JSONBCompat, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
