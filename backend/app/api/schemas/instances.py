"""Schemas for instance materialization and coach week edits."""
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class WeekEditRequest(BaseModel):
    # Raw task items; validated as task templates when the week is redistributed.
    weekly_tasks: Optional[List[Dict[str, Any]]] = None
    distribution: Optional[str] = None
    mode: Literal["fill-empty", "override-program-sourced"] = "fill-empty"
    horizon_days: Optional[int] = Field(default=None, ge=0, le=60)
    overwrite_existing: bool = False


class DistributionSummary(BaseModel):
    week_number: int
    recomputed_days: List[int]
    skipped_days: List[int]


class MemberSyncResponse(BaseModel):
    members_processed: int
    members_failed: int
    tasks_created: int
    tasks_replaced: int
    cohort_states: int
    errors: List[Dict[str, str]]


class WeekEditResponse(BaseModel):
    instance_id: UUID
    week_number: int
    distributed: DistributionSummary
    sync: MemberSyncResponse
    request_id: str


class ProgramWeekEditResponse(BaseModel):
    program_id: UUID
    week_number: int
    instances: List[WeekEditResponse]
    request_id: str


class MaterializeRequest(BaseModel):
    rebuild: bool = False


class InstanceSummary(BaseModel):
    id: UUID
    type: str
    program_id: UUID
    enrollment_id: Optional[UUID]
    cohort_id: Optional[UUID]
    start_date: str
    include_weekends: bool
    weeks: int
    days: int
    modules: int
    changed: bool
    request_id: str


class ClearTasksResponse(BaseModel):
    instance_id: UUID
    members: int
    deleted: int
    request_id: str


class CohortTaskStateSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    cohort_id: UUID
    day_index: int
    instance_task_id: str
    title: str
    date: Optional[dt.date]
    total_members: int
    completed_count: int
    completion_rate: int
    threshold_met: bool
    member_states: Dict[str, Dict[str, Any]]
