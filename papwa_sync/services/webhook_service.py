"""Provider push notifications -> out-of-band sync jobs.

A webhook never syncs inline; it enqueues an immediate sync job on the sync
queue. Deliveries within the same minute collapse onto one job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping

from sqlalchemy.orm import Session

from papwa_sync.db.enums import JobName, Provider, QueueName
from papwa_sync.db.models import Job
from papwa_sync.schemas.integration_config import CalendarRoutingConfig
from papwa_sync.services import integration_service, job_service

logger = logging.getLogger(__name__)

SYNC_JOB_FOR_PROVIDER: dict[Provider, JobName] = {
    Provider.CALENDAR: JobName.CALENDAR_SYNC,
    Provider.CRM: JobName.CRM_SYNC,
    Provider.LEADS: JobName.LEADS_SYNC,
}

GOOGLE_CHANNEL_HEADER = "x-goog-channel-id"
GOOGLE_STATE_HEADER = "x-goog-resource-state"


class WebhookRejected(Exception):
    """The delivery does not belong to a channel we registered."""


@dataclass
class WebhookResult:
    accepted: bool
    job: Job | None = None
    reason: str | None = None


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _check_calendar_channel(db: Session, headers: Mapping[str, str]) -> str | None:
    """Validate a calendar notification. Returns a reason to skip, or None."""
    state = integration_service.get_state(db, Provider.CALENDAR)
    routing = integration_service.get_config(state, CalendarRoutingConfig)
    channel_id = headers.get(GOOGLE_CHANNEL_HEADER)
    if routing.watch_channel_id and channel_id != routing.watch_channel_id:
        raise WebhookRejected(f"unknown calendar channel {channel_id!r}")
    # Sent once when the watch is created; nothing changed yet
    if headers.get(GOOGLE_STATE_HEADER) == "sync":
        return "channel handshake"
    return None


def enqueue_sync(
    db: Session,
    provider: Provider,
    *,
    reason: str = "manual",
    now: datetime | None = None,
) -> Job:
    """Enqueue an immediate sync tick for one provider."""
    now = now or _now_utc()
    bucket = now.replace(second=0, microsecond=0).isoformat()
    return job_service.enqueue(
        db,
        QueueName.SYNC,
        SYNC_JOB_FOR_PROVIDER[provider],
        {"reason": reason},
        idempotency_key=f"{reason}:{provider.value}:{bucket}",
        now=now,
    )


def handle_provider_webhook(
    db: Session,
    provider: Provider,
    headers: Mapping[str, str],
    *,
    now: datetime | None = None,
) -> WebhookResult:
    """
    Turn a provider notification into a sync job.

    Raises:
        WebhookRejected: calendar notification for a channel we did not open.
    """
    headers = {key.lower(): value for key, value in headers.items()}
    if not integration_service.is_active(db, provider):
        logger.info("Ignoring %s webhook: integration not connected", provider.value)
        return WebhookResult(accepted=False, reason="not connected")

    if provider == Provider.CALENDAR:
        skip = _check_calendar_channel(db, headers)
        if skip:
            return WebhookResult(accepted=True, reason=skip)

    job = enqueue_sync(db, provider, reason="webhook", now=now)
    logger.info("Webhook for %s queued sync job %s", provider.value, job.id)
    return WebhookResult(accepted=True, job=job)
