"""Per-cohort completion rollup ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, Index, Integer, String, Text, UniqueConstraint, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.db.types import JSONBCompat


class CohortTaskState(Base):
    """How far a cohort got with one instance task on one program day.

    ``member_states`` maps user id to ``{"status", "completed_at", "task_id",
    "removed"}``. Removed members stay in the map but drop out of the counts.
    """

    __tablename__ = "cohort_task_states"
    __table_args__ = (
        UniqueConstraint("cohort_id", "instance_task_id", "day_index", name="uq_cohort_task_states_cohort_task_day"),
        Index("ix_cohort_task_states_cohort_day", "cohort_id", "day_index"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    cohort_id = Column(UUID(as_uuid=True), nullable=False)
    instance_id = Column(UUID(as_uuid=True), nullable=False)
    program_id = Column(UUID(as_uuid=True), nullable=False)
    organization_id = Column(UUID(as_uuid=True), nullable=False)
    day_index = Column(Integer, nullable=False)
    instance_task_id = Column(String(length=64), nullable=False)
    title = Column(Text, nullable=False)
    # Cohort calendar date of the day; members may see it on their own local date.
    date = Column(Date, nullable=True)
    total_members = Column(Integer, nullable=False, server_default=sa_text("0"))
    completed_count = Column(Integer, nullable=False, server_default=sa_text("0"))
    completion_rate = Column(Integer, nullable=False, server_default=sa_text("0"))
    threshold_met = Column(Boolean, nullable=False, server_default=sa_text("false"))
    member_states = Column(JSONBCompat, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
