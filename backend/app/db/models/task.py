"""Materialized per-user task ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text as sa_text,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        # Idempotency key for program-sourced rows. User-authored rows carry
        # NULL instance columns, which never collide.
        UniqueConstraint(
            "user_id",
            "instance_id",
            "day_index",
            "instance_task_id",
            name="uq_tasks_instance_day_task",
        ),
        Index("ix_tasks_user_date", "user_id", "date"),
        Index("ix_tasks_instance_id", "instance_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(UUID(as_uuid=True), nullable=True)
    program_id = Column(UUID(as_uuid=True), nullable=True)
    enrollment_id = Column(UUID(as_uuid=True), nullable=True)
    instance_id = Column(UUID(as_uuid=True), nullable=True)
    instance_task_id = Column(String(length=64), nullable=True)
    day_index = Column(Integer, nullable=True)
    date = Column(Date, nullable=False)
    title = Column(Text, nullable=False)
    kind = Column(String(length=16), nullable=False, server_default=sa_text("'task'"))
    list_type = Column(String(length=16), nullable=False, server_default=sa_text("'backlog'"))
    order = Column(Integer, nullable=False, server_default=sa_text("0"))
    status = Column(String(length=16), nullable=False, server_default=sa_text("'pending'"))
    client_locked = Column(Boolean, nullable=False, server_default=sa_text("false"))
    source = Column(String(length=16), nullable=False, server_default=sa_text("'user'"))
    estimated_minutes = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    tag = Column(String(length=64), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
