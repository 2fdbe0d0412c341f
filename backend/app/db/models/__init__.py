"""ORM models exposed for metadata discovery."""
from app.db.models.cohort_task_state import CohortTaskState
from app.db.models.habit import Habit
from app.db.models.organization import OrganizationSettings
from app.db.models.program import Program, ProgramCohort, ProgramEnrollment
from app.db.models.program_instance import ProgramInstance
from app.db.models.sync_run import SyncRun
from app.db.models.task import Task
from app.db.models.user import User

__all__ = [
    "CohortTaskState",
    "Habit",
    "OrganizationSettings",
    "Program",
    "ProgramCohort",
    "ProgramEnrollment",
    "ProgramInstance",
    "SyncRun",
    "Task",
    "User",
]
