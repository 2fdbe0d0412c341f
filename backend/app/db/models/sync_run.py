"""Reconciliation run log ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.db.types import JSONBCompat


class SyncRun(Base):
    __tablename__ = "sync_runs"
    __table_args__ = (Index("ix_sync_runs_started_at", "started_at"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    # scheduler | http | manual
    trigger = Column(String(length=16), nullable=False)
    # succeeded | failed
    status = Column(String(length=16), nullable=False)
    summary = Column(JSONBCompat, nullable=False, default=dict)
    error = Column(String(length=500), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)
