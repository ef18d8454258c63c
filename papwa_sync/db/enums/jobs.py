"""Job-related enums."""

from enum import Enum


class QueueName(str, Enum):
    """Worker queues. Each runs with its own concurrency limit."""

    PLANNING = "planning"
    SYNC = "sync"
    NOTIFICATION = "notification"


class JobName(str, Enum):
    """Types of background jobs."""

    CALENDAR_SYNC = "calendar_sync"
    CRM_SYNC = "crm_sync"
    LEADS_SYNC = "leads_sync"
    CALLBACK_WORKFLOW = "callback_workflow"
    REPLAN = "replan"
    MORNING_BRIEFING = "morning_briefing"
    EVENING_REVIEW = "evening_review"
    WEEKLY_PLAN = "weekly_plan"
    PUSH_NOTIFICATION = "push_notification"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffType(str, Enum):
    """Retry delay strategy for a job."""

    STANDARD = "standard"  # exponential from backoff_delay_ms
    CUSTOM = "custom"  # function of attempts made, registered per job name


DEFAULT_JOB_STATUS = JobStatus.PENDING
