"""Recurring schedules and their stable registration keys."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum

from sqlalchemy.orm import Session

from papwa_sync.db.enums import JobName, QueueName
from papwa_sync.db.models import JobSchedule
from papwa_sync.services import schedule_service


class ScheduleKey(str, Enum):
    CALENDAR_SYNC = "sync:calendar"
    CRM_SYNC = "sync:crm"
    LEADS_SYNC = "sync:leads"
    MORNING_BRIEFING = "planning:morning-briefing"
    EVENING_REVIEW = "planning:evening-review"
    WEEKLY_PLAN = "planning:weekly-plan"


@dataclass(frozen=True)
class ScheduleDefinition:
    key: ScheduleKey
    cron: str
    queue: QueueName
    job_name: JobName


SCHEDULES: tuple[ScheduleDefinition, ...] = (
    ScheduleDefinition(ScheduleKey.CALENDAR_SYNC, "*/30 * * * *", QueueName.SYNC, JobName.CALENDAR_SYNC),
    ScheduleDefinition(ScheduleKey.CRM_SYNC, "*/15 * * * *", QueueName.SYNC, JobName.CRM_SYNC),
    ScheduleDefinition(ScheduleKey.LEADS_SYNC, "*/15 * * * *", QueueName.SYNC, JobName.LEADS_SYNC),
    ScheduleDefinition(ScheduleKey.MORNING_BRIEFING, "0 6 * * *", QueueName.PLANNING, JobName.MORNING_BRIEFING),
    ScheduleDefinition(ScheduleKey.EVENING_REVIEW, "0 20 * * *", QueueName.PLANNING, JobName.EVENING_REVIEW),
    ScheduleDefinition(ScheduleKey.WEEKLY_PLAN, "0 18 * * 0", QueueName.PLANNING, JobName.WEEKLY_PLAN),
)


def setup_schedules(
    db: Session, *, now: datetime | None = None, tz: tzinfo = timezone.utc
) -> list[JobSchedule]:
    """Reset every repeatable registration to the set above."""
    schedule_service.remove_all_schedules(db)
    return [
        schedule_service.register_schedule(
            db, definition.key.value, definition.cron, definition.queue, definition.job_name, now=now, tz=tz
        )
        for definition in SCHEDULES
    ]
