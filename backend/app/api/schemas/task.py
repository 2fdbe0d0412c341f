"""Schemas for the member task surface."""
from __future__ import annotations

import datetime as dt
from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class TaskSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    date: dt.date
    kind: str
    list_type: str
    order: int
    status: str
    client_locked: bool
    source: str
    instance_id: Optional[UUID]
    instance_task_id: Optional[str]
    day_index: Optional[int]
    estimated_minutes: Optional[int]
    notes: Optional[str]
    completed_at: Optional[datetime]


class TaskUpdateRequest(BaseModel):
    user_id: UUID
    status: Optional[Literal["pending", "completed", "deleted"]] = None
    client_locked: Optional[bool] = None


class TaskUpdateResponse(BaseModel):
    id: UUID
    status: str
    client_locked: bool
    completed_at: Optional[datetime]
    request_id: str
