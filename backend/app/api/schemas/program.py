"""Schemas for program templates and the instance documents derived from them."""
from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

DayTag = Union[Literal["auto", "spread", "daily"], int, List[int]]


class _TaskTemplateBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    label: str = Field(min_length=1)
    is_primary: bool = False
    estimated_minutes: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None
    tag: Optional[str] = None
    day_tag: DayTag = "auto"


class ActionTaskTemplate(_TaskTemplateBase):
    type: Literal["task"] = "task"


class LearningTaskTemplate(_TaskTemplateBase):
    type: Literal["learning"]
    resource_url: Optional[str] = None


class AdminTaskTemplate(_TaskTemplateBase):
    type: Literal["admin"]


class HabitTaskTemplate(_TaskTemplateBase):
    """A weekly item that repeats on every day of its week."""

    type: Literal["habit"]


# Items without a "type" validate as ActionTaskTemplate; every other variant
# requires its literal, so exactly one member matches.
TaskTemplate = Union[ActionTaskTemplate, LearningTaskTemplate, AdminTaskTemplate, HabitTaskTemplate]


class HabitTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    description: Optional[str] = None
    frequency: Literal["daily", "weekday", "custom"] = "daily"
    days_of_week: Optional[List[int]] = None


class ProgramModuleTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: Optional[str] = None
    order: int = 0
    start_day_index: Optional[int] = Field(default=None, ge=1)
    end_day_index: Optional[int] = Field(default=None, ge=1)
    habits: List[HabitTemplate] = Field(default_factory=list)


class ProgramDayTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    day_index: int = Field(ge=1)
    tasks: List[TaskTemplate] = Field(default_factory=list)


class ProgramWeekTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    week_number: int = Field(ge=1)
    module_id: Optional[str] = None
    name: Optional[str] = None
    theme: Optional[str] = None
    start_day_index: Optional[int] = Field(default=None, ge=1)
    end_day_index: Optional[int] = Field(default=None, ge=1)
    distribution: Optional[str] = None
    weekly_tasks: List[TaskTemplate] = Field(default_factory=list)
    days: List[ProgramDayTemplate] = Field(default_factory=list)


class ProgramTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    organization_id: str
    length_days: int = Field(default=28, ge=1)
    include_weekends: bool = True
    default_distribution: Optional[str] = None
    modules: List[ProgramModuleTemplate] = Field(default_factory=list)
    weeks: List[ProgramWeekTemplate] = Field(default_factory=list)


class InstanceTask(BaseModel):
    """A resolved task inside an instance day."""

    model_config = ConfigDict(extra="ignore")

    id: str
    label: str
    type: Literal["task", "learning", "admin", "habit"] = "task"
    is_primary: bool = False
    estimated_minutes: Optional[int] = None
    notes: Optional[str] = None
    tag: Optional[str] = None
    resource_url: Optional[str] = None
    source: Literal["week", "day"] = "week"
