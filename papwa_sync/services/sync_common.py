"""Pieces shared by the per-provider reconciliation services."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from papwa_sync.core.errors import AuthError, RecordValidationError, SyncError
from papwa_sync.core.structured_logging import build_log_context
from papwa_sync.db.enums import Provider, SyncStatus
from papwa_sync.db.models import IntegrationState
from papwa_sync.services import integration_service
from papwa_sync.services.token_service import TokenManager

logger = logging.getLogger(__name__)

# Errors that skip one record without aborting the batch
RECORD_ERRORS = (RecordValidationError, ValueError, KeyError, SQLAlchemyError)


@dataclass
class SyncOutcome:
    """Result of one provider tick; the caller decides what to log or enqueue."""

    provider: Provider
    status: SyncStatus = SyncStatus.OK
    pushed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    new_appointments: int = 0
    callbacks_enqueued: int = 0
    errors: list[str] = field(default_factory=list)
    detail: str | None = None

    @property
    def local_writes(self) -> int:
        return self.pushed + self.created + self.updated + self.deleted

    def as_dict(self) -> dict:
        return {
            "provider": self.provider.value,
            "status": self.status.value,
            "pushed": self.pushed,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "new_appointments": self.new_appointments,
            "callbacks_enqueued": self.callbacks_enqueued,
            "errors": list(self.errors),
            "detail": self.detail,
        }


def skip_record(
    db: Session, outcome: SyncOutcome, record_id: str, exc: Exception
) -> None:
    """Roll back the failed record's writes, log it, and move on."""
    db.rollback()
    outcome.skipped += 1
    outcome.errors.append(f"{record_id}: {exc}")
    logger.warning(
        "Skipping %s record %s: %s",
        outcome.provider.value,
        record_id,
        exc,
        extra=build_log_context(provider=outcome.provider.value, record_id=record_id),
    )


def resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return timezone.utc


def sync_horizon(now: datetime, tz: tzinfo, days: int = 8) -> tuple[datetime, datetime]:
    """[local midnight today, +days) expressed in UTC."""
    local_today = now.astimezone(tz).date()
    start = datetime.combine(local_today, time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), (start + timedelta(days=days)).astimezone(timezone.utc)


TickBody = Callable[[str, IntegrationState, SyncOutcome], Awaitable[None]]


async def run_provider_tick(
    db: Session,
    tokens: TokenManager,
    provider: Provider,
    body: TickBody,
    *,
    now: datetime | None = None,
) -> SyncOutcome:
    """
    Run one provider's sync tick with the shared failure policy.

    - inactive integration: skipped, the provider is never called
    - AuthError: integration deactivated, reconnect required
    - any other SyncError from a list call: tick aborted, next tick retries
    """
    outcome = SyncOutcome(provider=provider)
    log_context = build_log_context(provider=provider.value)

    state = integration_service.get_active_state(db, provider)
    if not state:
        outcome.status = SyncStatus.SKIPPED
        logger.debug("%s not connected, skipping sync", provider.value, extra=log_context)
        return outcome

    try:
        access_token = await tokens.get_valid_token(provider, now=now)
        await body(access_token, state, outcome)
    except AuthError as exc:
        db.rollback()
        tokens.deactivate_for(provider, str(exc))
        outcome.status = SyncStatus.DEACTIVATED
        outcome.detail = str(exc)
        logger.error("%s sync stopped, reconnect required: %s", provider.value, exc, extra=log_context)
        return outcome
    except SyncError as exc:
        db.rollback()
        outcome.status = SyncStatus.ABORTED
        outcome.detail = str(exc)
        state = integration_service.get_state(db, provider)
        if state:
            integration_service.record_error(db, state, str(exc))
        logger.warning("%s sync tick aborted: %s", provider.value, exc, extra=log_context)
        return outcome

    logger.info(
        "%s sync %s: pushed=%s created=%s updated=%s deleted=%s skipped=%s",
        provider.value,
        outcome.status.value,
        outcome.pushed,
        outcome.created,
        outcome.updated,
        outcome.deleted,
        outcome.skipped,
        extra=log_context,
    )
    return outcome
