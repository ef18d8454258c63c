"""Database enums - re-exported for convenience."""

from papwa_sync.db.enums.integrations import Provider, SyncStatus
from papwa_sync.db.enums.jobs import (
    DEFAULT_JOB_STATUS,
    BackoffType,
    JobName,
    JobStatus,
    QueueName,
)
from papwa_sync.db.enums.records import (
    EventSource,
    TaskCategory,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    "BackoffType",
    "DEFAULT_JOB_STATUS",
    "EventSource",
    "JobName",
    "JobStatus",
    "Provider",
    "QueueName",
    "SyncStatus",
    "TaskCategory",
    "TaskPriority",
    "TaskStatus",
]
