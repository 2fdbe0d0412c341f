"""Schemas for job operations endpoints."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HabitCountsResponse(_CamelModel):
    created: int
    updated: int
    archived: int


class ProgramSyncResponse(_CamelModel):
    synced_today: int
    synced_tomorrow: int
    skipped: int
    no_instance: int
    data_integrity: int
    errors: int
    orphans_removed: int
    cohort_states: int
    habits: HabitCountsResponse
    duration: float
    run_id: str
