"""Task and calendar event enums."""

from enum import Enum


class TaskStatus(str, Enum):
    INBOX = "inbox"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskCategory(str, Enum):
    DOOR_KNOCKING = "door_knocking"
    APPOINTMENT = "appointment"
    FOLLOW_UP = "follow_up"
    ADMIN = "admin"
    GOAL_WORK = "goal_work"
    PERSONAL = "personal"
    OTHER = "other"


class EventSource(str, Enum):
    """Where a calendar event came from."""

    AI_PLANNED = "ai_planned"
    MANUAL = "manual"
    CALENDAR = "calendar"
    CRM = "crm"
    LEADS = "leads"
