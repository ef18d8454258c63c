"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from papwa_sync.db.enums import JobName
from papwa_sync.jobs.handlers import callbacks, notifications, planning, sync
from papwa_sync.services.callback_saga_service import callback_backoff_delay
from papwa_sync.services.job_service import BackoffFunction

JobHandler = Callable[[object, object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobName.CALENDAR_SYNC.value: sync.process_calendar_sync,
    JobName.CRM_SYNC.value: sync.process_crm_sync,
    JobName.LEADS_SYNC.value: sync.process_leads_sync,
    JobName.CALLBACK_WORKFLOW.value: callbacks.process_callback_workflow,
    JobName.REPLAN.value: planning.process_replan,
    JobName.MORNING_BRIEFING.value: planning.process_morning_briefing,
    JobName.EVENING_REVIEW.value: planning.process_evening_review,
    JobName.WEEKLY_PLAN.value: planning.process_weekly_plan,
    JobName.PUSH_NOTIFICATION.value: notifications.process_push_notification,
}

# Custom retry delays, keyed by job name
CUSTOM_BACKOFFS: Mapping[str, BackoffFunction] = {
    JobName.CALLBACK_WORKFLOW.value: callback_backoff_delay,
}


def resolve_job_handler(job_name: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_name)
    if not handler:
        raise ValueError(f"Unknown job name: {job_name}")
    return handler
