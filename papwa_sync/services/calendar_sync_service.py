"""Calendar reconciliation: push planned blocks, pull external events, clean drift.

One tick, in order:
1. push  - ai_planned events in the horizon without google_event_id are
           created remotely; the returned id is stored and is the only
           idempotency key for later ticks.
2. pull  - remote events in the horizon are mirrored as local blockers,
           skipping events this app created, cancelled and all-day events;
           existing mirrors are written only when a field actually changed.
3. drift - local mirrors whose remote id was not seen in the pull are deleted.

Push runs before pull so a just-pushed event is never mistaken for an
external one.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from papwa_sync.connectors.base import CalendarConnector, DeleteResult, EventDraft, RemoteEvent
from papwa_sync.core.errors import AuthError, RateLimitError, SyncError
from papwa_sync.core.structured_logging import build_log_context
from papwa_sync.db.enums import EventSource, Provider
from papwa_sync.db.models import CalendarEvent, IntegrationState
from papwa_sync.schemas.integration_config import CalendarRoutingConfig
from papwa_sync.schemas.metadata import EventMetadata
from papwa_sync.services import integration_service, record_service
from papwa_sync.services.sync_common import (
    RECORD_ERRORS,
    SyncOutcome,
    run_provider_tick,
    skip_record,
    sync_horizon,
)
from papwa_sync.services.token_service import TokenManager

logger = logging.getLogger(__name__)

PROVIDER = Provider.CALENDAR
SYNC_HORIZON_DAYS = 8
PULL_MAX_RESULTS = 100
DEFAULT_BLOCKER_TITLE = "Busy"
BLOCKER_COLOR = "slate"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _draft(event: CalendarEvent) -> EventDraft:
    return EventDraft(
        title=event.title,
        start=event.start_time,
        end=event.end_time,
        description=event.description,
        location=event.location,
        local_event_id=str(event.id),
    )


def _mirror_fields(remote: RemoteEvent) -> dict:
    return {
        "title": remote.title or DEFAULT_BLOCKER_TITLE,
        "description": remote.description,
        "start_time": remote.start,
        "end_time": remote.end,
        "location": remote.location,
    }


def _is_mirrorable(remote: RemoteEvent) -> bool:
    if remote.app_event_id:
        return False
    if remote.is_cancelled or remote.all_day:
        return False
    return remote.start is not None and remote.end is not None


# =============================================================================
# Calendar routing
# =============================================================================


async def resolve_push_calendar(
    db: Session,
    connector: CalendarConnector,
    access_token: str,
    state: IntegrationState,
    calendar_name: str,
) -> str:
    """
    Calendar that planned events are pushed into.

    Found or created by name on first use and remembered in the routing
    config. Falls back to the pull calendar if that fails.
    """
    routing = integration_service.get_config(state, CalendarRoutingConfig)
    if routing.push_calendar_id:
        return routing.push_calendar_id

    try:
        calendar_id = await connector.find_or_create_calendar(access_token, calendar_name)
    except AuthError:
        raise
    except SyncError as exc:
        logger.warning(
            "Could not find or create calendar %r, pushing to %s: %s",
            calendar_name,
            routing.pull_calendar_id,
            exc,
            extra=build_log_context(provider=PROVIDER.value),
        )
        return routing.pull_calendar_id

    routing.push_calendar_id = calendar_id
    integration_service.save_config(db, state, routing)
    return calendar_id


# =============================================================================
# Push / pull / drift
# =============================================================================


async def push_planned_events(
    db: Session,
    connector: CalendarConnector,
    access_token: str,
    calendar_id: str,
    start: datetime,
    end: datetime,
    outcome: SyncOutcome,
) -> None:
    """Create remote counterparts for planned events that have none yet."""
    for event in record_service.list_unpushed_planned_events(db, start, end):
        event_id = str(event.id)
        try:
            remote_id = await connector.create_event(access_token, calendar_id, _draft(event))
            event.google_event_id = remote_id
            db.commit()
            outcome.pushed += 1
        except (AuthError, RateLimitError):
            raise
        except SyncError as exc:
            # Left without a remote id; retried next tick
            skip_record(db, outcome, event_id, exc)
        except RECORD_ERRORS as exc:
            skip_record(db, outcome, event_id, exc)


def apply_remote_events(
    db: Session, remote_events: list[RemoteEvent], outcome: SyncOutcome
) -> set[str]:
    """Mirror remote events locally. Returns the set of live remote ids."""
    live_ids: set[str] = set()
    for remote in remote_events:
        if not _is_mirrorable(remote):
            continue
        live_ids.add(remote.id)
        try:
            existing = record_service.get_event_by_google_id(db, remote.id)
            fields = _mirror_fields(remote)
            if existing is None:
                record_service.create_event(
                    db,
                    source=EventSource.CALENDAR.value,
                    google_event_id=remote.id,
                    is_blocker=True,
                    color=BLOCKER_COLOR,
                    meta=EventMetadata(category="other", google_calendar=True).model_dump(
                        mode="json", exclude_defaults=True
                    ),
                    **fields,
                )
                db.commit()
                outcome.created += 1
            elif existing.source == EventSource.CALENDAR.value:
                if record_service.apply_changes(existing, fields):
                    db.commit()
                    outcome.updated += 1
        except RECORD_ERRORS as exc:
            skip_record(db, outcome, remote.id, exc)
    return live_ids


def remove_drifted_mirrors(
    db: Session, start: datetime, end: datetime, live_ids: set[str], outcome: SyncOutcome
) -> None:
    """Delete local mirrors in the horizon whose remote event is gone."""
    for event in record_service.list_mirrored_events(db, start, end):
        if event.google_event_id in live_ids:
            continue
        try:
            record_service.delete_event(db, event)
            db.commit()
            outcome.deleted += 1
        except RECORD_ERRORS as exc:
            skip_record(db, outcome, event.google_event_id or str(event.id), exc)


async def sync_calendar(
    db: Session,
    tokens: TokenManager,
    connector: CalendarConnector,
    *,
    calendar_name: str,
    tz,
    now: datetime | None = None,
) -> SyncOutcome:
    """One full calendar tick: push, pull, drift cleanup."""
    now = now or _now_utc()
    start, end = sync_horizon(now, tz, days=SYNC_HORIZON_DAYS)

    async def body(access_token: str, state: IntegrationState, outcome: SyncOutcome) -> None:
        routing = integration_service.get_config(state, CalendarRoutingConfig)
        push_calendar = await resolve_push_calendar(
            db, connector, access_token, state, calendar_name
        )

        await push_planned_events(db, connector, access_token, push_calendar, start, end, outcome)

        remote_events = await connector.fetch_calendar_events(
            access_token,
            routing.pull_calendar_id,
            start,
            end,
            max_results=PULL_MAX_RESULTS,
        )
        live_ids = apply_remote_events(db, remote_events, outcome)
        remove_drifted_mirrors(db, start, end, live_ids, outcome)

        state = integration_service.get_state(db, PROVIDER)
        integration_service.mark_synced(db, state, now=now)

    return await run_provider_tick(db, tokens, PROVIDER, body, now=now)


# =============================================================================
# Planner-facing remote writes
# =============================================================================


async def update_remote_event(
    db: Session,
    tokens: TokenManager,
    connector: CalendarConnector,
    event: CalendarEvent,
) -> bool:
    """Propagate a local edit of a pushed planned event. Returns False if not pushed."""
    if not event.google_event_id or event.source != EventSource.AI_PLANNED.value:
        return False
    state = integration_service.get_active_state(db, PROVIDER)
    if not state:
        return False
    access_token = await tokens.get_valid_token(PROVIDER)
    routing = integration_service.get_config(state, CalendarRoutingConfig)
    calendar_id = routing.push_calendar_id or routing.pull_calendar_id
    await connector.update_event(access_token, calendar_id, event.google_event_id, _draft(event))
    return True


async def delete_planned_event(
    db: Session,
    tokens: TokenManager,
    connector: CalendarConnector,
    event: CalendarEvent,
) -> DeleteResult | None:
    """
    Delete a planned event locally and, when it was pushed, remotely.

    A remote 404 counts as success. Returns the remote result (None when
    no remote call was needed).
    """
    result: DeleteResult | None = None
    if event.google_event_id and integration_service.is_active(db, PROVIDER):
        state = integration_service.get_active_state(db, PROVIDER)
        routing = integration_service.get_config(state, CalendarRoutingConfig)
        access_token = await tokens.get_valid_token(PROVIDER)
        result = await connector.delete_event(
            access_token,
            routing.push_calendar_id or routing.pull_calendar_id,
            event.google_event_id,
        )
    record_service.delete_event(db, event)
    db.commit()
    return result
