"""SQLAlchemy ORM models - re-exported for convenience."""

from papwa_sync.db.models.integrations import IntegrationState
from papwa_sync.db.models.jobs import Job, JobSchedule
from papwa_sync.db.models.records import CalendarEvent, Task

__all__ = [
    "CalendarEvent",
    "IntegrationState",
    "Job",
    "JobSchedule",
    "Task",
]
