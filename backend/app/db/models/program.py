"""Program template, cohort and enrollment ORM models."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.db.types import JSONBCompat


class Program(Base):
    __tablename__ = "programs"
    __table_args__ = (Index("ix_programs_organization_id", "organization_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    organization_id = Column(UUID(as_uuid=True), nullable=False)
    name = Column(Text, nullable=False)
    length_days = Column(Integer, nullable=False, server_default=sa_text("28"))
    include_weekends = Column(Boolean, nullable=False, server_default=sa_text("true"))
    default_distribution = Column(String(length=32), nullable=True)
    # Percent of a cohort that must complete a task for it to count as met.
    cohort_completion_threshold = Column(Integer, nullable=False, server_default=sa_text("50"))
    # Authoring-time documents, validated by app.api.schemas.program.
    modules = Column(JSONBCompat, nullable=False, default=list)
    weeks = Column(JSONBCompat, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class ProgramCohort(Base):
    __tablename__ = "program_cohorts"
    __table_args__ = (Index("ix_program_cohorts_program_id", "program_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    program_id = Column(UUID(as_uuid=True), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(UUID(as_uuid=True), nullable=False)
    name = Column(Text, nullable=False)
    start_date = Column(Date, nullable=False)
    status = Column(String(length=32), nullable=False, server_default=sa_text("'active'"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ProgramEnrollment(Base):
    __tablename__ = "program_enrollments"
    __table_args__ = (
        Index("ix_program_enrollments_user_id", "user_id"),
        Index("ix_program_enrollments_status", "status"),
        Index("ix_program_enrollments_cohort_id", "cohort_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    program_id = Column(UUID(as_uuid=True), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(UUID(as_uuid=True), nullable=False)
    cohort_id = Column(UUID(as_uuid=True), ForeignKey("program_cohorts.id", ondelete="SET NULL"), nullable=True)
    started_at = Column(Date, nullable=False)
    # active | paused | completed | upcoming
    status = Column(String(length=32), nullable=False, server_default=sa_text("'active'"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
