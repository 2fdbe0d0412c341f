"""Habit ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.db.types import JSONBCompat


class Habit(Base):
    __tablename__ = "habits"
    __table_args__ = (Index("ix_habits_user_program", "user_id", "program_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(UUID(as_uuid=True), nullable=True)
    program_id = Column(UUID(as_uuid=True), nullable=True)
    module_id = Column(String(length=64), nullable=True)
    text = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    # daily | weekday | custom
    frequency_type = Column(String(length=16), nullable=False, server_default=sa_text("'daily'"))
    # Monday=0 .. Sunday=6
    days_of_week = Column(JSONBCompat, nullable=False, default=list)
    # module_default | program_default | user
    source = Column(String(length=32), nullable=False, server_default=sa_text("'user'"))
    archived = Column(Boolean, nullable=False, server_default=sa_text("false"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
