"""Callback workflow: lead callback -> CRM deal -> proposal task -> prep block.

Runs as a queued job with an attempt budget. Every step is safe to re-run:

1. deal creation     first attempt only; the deal id is written back into
                     the job payload. Failure is logged and the saga goes on.
2. proposal task     looked up by a stable external id before creating.
3. appointment match local events first, then the live calendars, 60 days out.
4. prep scheduling   one prep block per lead, found again by its metadata
                     marker on re-runs.

No match with attempts left raises SagaRetryableError so the job runtime
reschedules with callback_backoff_delay. No match on the last attempt is a
normal, logged completion: the task exists and nothing is scheduled.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from papwa_sync.connectors import ConnectorRegistry
from papwa_sync.core.errors import AuthError, SagaRetryableError, SyncError
from papwa_sync.core.structured_logging import build_log_context
from papwa_sync.db.enums import (
    EventSource,
    JobName,
    Provider,
    QueueName,
    TaskCategory,
    TaskPriority,
    TaskStatus,
)
from papwa_sync.db.models import CalendarEvent, Job, Task
from papwa_sync.schemas.callbacks import CallbackWorkflowPayload, LeadSnapshot
from papwa_sync.schemas.integration_config import CalendarRoutingConfig
from papwa_sync.schemas.metadata import EventMetadata, LeadTaskMetadata
from papwa_sync.services import integration_service, job_service, record_service
from papwa_sync.services.job_service import BackoffPolicy
from papwa_sync.services.token_service import TokenManager

logger = logging.getLogger(__name__)

INITIAL_DELAY_MS = 10 * 60 * 1000
MAX_ATTEMPTS = 4
DEFAULT_RETRY_DELAY_MS = 60 * 60 * 1000

# attempts made -> delay before the next attempt
RETRY_DELAYS_MS = {
    1: 30 * 60 * 1000,
    2: 60 * 60 * 1000,
    3: 2 * 60 * 60 * 1000,
}

SEARCH_WINDOW = timedelta(days=60)
REMOTE_SEARCH_MAX_RESULTS = 200
PREP_BUFFER = timedelta(minutes=15)
MIN_STREET_MATCH_LENGTH = 3
PREP_COLOR = "orange"
PREP_MARKER = "callback_prep_lead_id"

DEAL_STAGE = "Qualification"
SOLAR_FIELD_KEYS = ("roof type", "meter", "main breaker", "property type", "need", "country")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def callback_backoff_delay(attempts_made: int) -> int:
    """Delay in ms before the next attempt, keyed by attempts made so far.

    The first attempt's wait is the enqueue delay, not this function.
    """
    return RETRY_DELAYS_MS.get(attempts_made, DEFAULT_RETRY_DELAY_MS)


def proposal_task_external_id(lead_id: str) -> str:
    return f"sr_proposal_{lead_id}"


class SagaState(str, Enum):
    SCHEDULED = "scheduled"
    UNSCHEDULED = "unscheduled"


@dataclass
class AppointmentMatch:
    event_id: str
    start: datetime
    end: datetime


@dataclass
class SagaResult:
    state: SagaState
    task_id: str
    crm_deal_id: str | None = None
    appointment: AppointmentMatch | None = None
    prep_event_id: str | None = None


def enqueue_callback_workflow(
    db: Session, payload: CallbackWorkflowPayload, *, now: datetime | None = None
) -> Job:
    """Queue the workflow for a lead; one job per lead id."""
    return job_service.enqueue(
        db,
        QueueName.SYNC,
        JobName.CALLBACK_WORKFLOW,
        payload.model_dump(mode="json"),
        delay_ms=INITIAL_DELAY_MS,
        attempts=MAX_ATTEMPTS,
        backoff=BackoffPolicy.custom(),
        idempotency_key=f"callback:{payload.lead.id}",
        now=now,
    )


# =============================================================================
# Step 1: CRM deal
# =============================================================================


def _is_number(value: str) -> bool:
    try:
        return math.isfinite(float(value))
    except ValueError:
        return False


def _is_date(value: str) -> bool:
    try:
        date.fromisoformat(value[:10])
    except ValueError:
        return False
    return True


def build_deal_record(lead: LeadSnapshot, deal_fields: dict[str, str]) -> dict[str, Any]:
    """
    Map a lead onto a CRM deal.

    budget -> Amount, timeline -> Closing_Date. Solar custom fields go to
    the deal field whose label contains the lead field name, or to a
    "Solar Details" block in the description when no such field exists.
    """
    record: dict[str, Any] = {
        "Deal_Name": f"{lead.contact_name or 'Lead'} - Solar Proposal",
        "Stage": DEAL_STAGE,
    }
    if lead.phone:
        record["Phone"] = lead.phone
    if lead.email:
        record["Email"] = lead.email
    if lead.full_address:
        record["Address"] = lead.full_address

    solar_details: dict[str, str] = {}
    for key, value in lead.custom_fields.items():
        if not value:
            continue
        key_lower = key.lower()
        if key_lower == "budget" and _is_number(value):
            record["Amount"] = float(value)
            continue
        if key_lower == "timeline" and _is_date(value):
            record["Closing_Date"] = value
            continue
        if any(solar_key in key_lower for solar_key in SOLAR_FIELD_KEYS):
            api_name = next(
                (name for name, label in deal_fields.items() if key_lower in label.lower()),
                None,
            )
            if api_name:
                record[api_name] = value
            else:
                solar_details[key] = value

    description = lead.notes or ""
    if solar_details:
        description += "\n\n--- Solar Details ---"
        for key, value in solar_details.items():
            description += f"\n{key}: {value}"
    if description:
        record["Description"] = description
    return record


async def create_crm_deal(
    db: Session, tokens: TokenManager, connectors: ConnectorRegistry, lead: LeadSnapshot
) -> str | None:
    """Create the deal. Returns None when the CRM is not connected or the call fails."""
    if not integration_service.is_active(db, Provider.CRM):
        logger.info("CRM not connected, skipping deal creation for lead %s", lead.id)
        return None

    log_context = build_log_context(provider=Provider.CRM.value, record_id=lead.id)
    try:
        access_token = await tokens.get_valid_token(Provider.CRM)
        deal_fields: dict[str, str] = {}
        if lead.custom_fields:
            deal_fields = await connectors.crm.discover_deal_fields(access_token)
        deal_id = await connectors.crm.create_deal(
            access_token, build_deal_record(lead, deal_fields)
        )
    except SyncError as exc:
        logger.warning("CRM deal creation failed for lead %s: %s", lead.id, exc, extra=log_context)
        return None

    logger.info("Created CRM deal %s for lead %s", deal_id, lead.id, extra=log_context)
    return deal_id


# =============================================================================
# Step 2: proposal task
# =============================================================================


def ensure_proposal_task(db: Session, lead: LeadSnapshot, prep_minutes: int) -> Task:
    external_id = proposal_task_external_id(lead.id)
    existing = record_service.get_task_by_external(db, external_id, Provider.LEADS.value)
    if existing:
        return existing

    contact_name = lead.contact_name
    location = lead.location
    description = f"Prepare solar proposal for {contact_name}"
    if location:
        description += f" at {location}"

    task = record_service.create_task(
        db,
        title=f"Prepare proposal for {contact_name or 'Lead'}",
        description=description,
        status=TaskStatus.INBOX.value,
        category=TaskCategory.ADMIN.value,
        priority=TaskPriority.HIGH.value,
        estimated_minutes=prep_minutes,
        contact_name=contact_name or None,
        contact_phone=lead.phone,
        location=location or None,
        external_id=external_id,
        external_source=Provider.LEADS.value,
        meta=LeadTaskMetadata(
            lead_id=lead.id, lead_email=lead.email, callback_proposal=True
        ).model_dump(mode="json", exclude_defaults=True),
    )
    db.commit()
    logger.info("Created proposal task %s for lead %s", task.id, lead.id)
    return task


# =============================================================================
# Step 3: appointment search
# =============================================================================


def _match_terms(lead: LeadSnapshot) -> tuple[str, str]:
    last_name = (lead.last_name or "").lower()
    street = (lead.address or "").lower().split(",")[0].strip()
    if len(street) <= MIN_STREET_MATCH_LENGTH:
        street = ""
    return last_name, street


def _text_matches(text: str, last_name: str, street: str) -> bool:
    text = text.lower()
    return bool((last_name and last_name in text) or (street and street in text))


def _event_text(*parts: str | None) -> str:
    return " ".join(part or "" for part in parts)


def _is_prep_block(event: CalendarEvent) -> bool:
    return bool((event.meta or {}).get(PREP_MARKER))


async def find_matching_appointment(
    db: Session,
    tokens: TokenManager,
    connectors: ConnectorRegistry,
    lead: LeadSnapshot,
    *,
    now: datetime,
) -> AppointmentMatch | None:
    """
    Find the lead's appointment in the next 60 days.

    Matches on last name, or on the street part of the address when it is
    longer than three characters, against title, description and location.
    """
    last_name, street = _match_terms(lead)
    if not last_name and not street:
        return None
    window_end = now + SEARCH_WINDOW

    for event in record_service.list_events(db, now, window_end):
        if _is_prep_block(event):
            continue
        if _text_matches(_event_text(event.title, event.description, event.location), last_name, street):
            return AppointmentMatch(str(event.id), event.start_time, event.end_time)

    state = integration_service.get_active_state(db, Provider.CALENDAR)
    if not state:
        return None

    try:
        access_token = await tokens.get_valid_token(Provider.CALENDAR)
    except AuthError as exc:
        logger.warning("Calendar search skipped: %s", exc)
        return None

    routing = integration_service.get_config(state, CalendarRoutingConfig)
    calendar_ids = [routing.pull_calendar_id]
    if routing.work_calendar_id:
        calendar_ids.append(routing.work_calendar_id)

    for calendar_id in calendar_ids:
        try:
            remote_events = await connectors.calendar.fetch_calendar_events(
                access_token,
                calendar_id,
                now,
                window_end,
                max_results=REMOTE_SEARCH_MAX_RESULTS,
            )
        except SyncError as exc:
            logger.warning(
                "Calendar search failed for %s: %s",
                calendar_id,
                exc,
                extra=build_log_context(provider=Provider.CALENDAR.value, record_id=lead.id),
            )
            continue
        for remote in remote_events:
            if remote.is_cancelled or remote.all_day or not remote.start or not remote.end:
                continue
            text = _event_text(remote.title, remote.description, remote.location)
            if _text_matches(text, last_name, street):
                return AppointmentMatch(remote.id, remote.start, remote.end)
    return None


# =============================================================================
# Step 4: prep block
# =============================================================================


def prep_window(appointment_start: datetime, prep_minutes: int) -> tuple[datetime, datetime]:
    """(start, end) of the prep block ending 15 minutes before the appointment."""
    end = appointment_start - PREP_BUFFER
    return end - timedelta(minutes=prep_minutes), end


def schedule_prep(
    db: Session, task: Task, lead_id: str, prep_minutes: int, appointment_start: datetime
) -> CalendarEvent:
    """Create the prep block once per lead and mark the task scheduled."""
    existing = record_service.find_event_by_meta(db, EventSource.AI_PLANNED, PREP_MARKER, lead_id)
    if existing:
        logger.info("Prep block for lead %s already exists", lead_id)
        return existing

    start, end = prep_window(appointment_start, prep_minutes)
    event = record_service.create_event(
        db,
        title="Prepare proposal",
        description="Proposal prep time before appointment",
        start_time=start,
        end_time=end,
        task_id=task.id,
        source=EventSource.AI_PLANNED.value,
        is_blocker=False,
        color=PREP_COLOR,
        meta=EventMetadata(
            category=TaskCategory.ADMIN.value,
            calendar_type="work",
            callback_prep_lead_id=lead_id,
        ).model_dump(mode="json", exclude_defaults=True),
    )
    record_service.apply_changes(
        task, {"deadline": appointment_start, "status": TaskStatus.SCHEDULED.value}
    )
    db.commit()
    logger.info("Scheduled proposal prep %s - %s for lead %s", start.isoformat(), end.isoformat(), lead_id)
    return event


# =============================================================================
# Saga
# =============================================================================


async def run_callback_workflow(
    db: Session,
    tokens: TokenManager,
    connectors: ConnectorRegistry,
    job: Job,
    *,
    now: datetime | None = None,
) -> SagaResult:
    """
    Run one attempt of the workflow for the lead in job.payload.

    Raises:
        SagaRetryableError: no appointment found and attempts remain.
    """
    now = now or _now_utc()
    payload = CallbackWorkflowPayload.model_validate(job.payload or {})
    lead = payload.lead
    # Attempts are counted on claim, so the current one is already included
    attempts_made = max(job.attempts - 1, 0)
    max_attempts = job.max_attempts or MAX_ATTEMPTS
    log_context = build_log_context(
        job_id=str(job.id), job_name=job.name, record_id=lead.id, attempt=attempts_made + 1
    )
    logger.info(
        "Callback workflow for lead %s, attempt %s/%s",
        lead.id,
        attempts_made + 1,
        max_attempts,
        extra=log_context,
    )

    if attempts_made == 0 and not payload.crm_deal_id:
        deal_id = await create_crm_deal(db, tokens, connectors, lead)
        if deal_id:
            payload.crm_deal_id = deal_id
            job.payload = payload.model_dump(mode="json")
            db.commit()

    task = ensure_proposal_task(db, lead, payload.proposal_prep_minutes)

    appointment = await find_matching_appointment(db, tokens, connectors, lead, now=now)
    if appointment is None:
        if attempts_made < max_attempts - 1:
            raise SagaRetryableError(
                f"No matching appointment for lead {lead.id} (attempt {attempts_made + 1})"
            )
        logger.info(
            "No appointment for lead %s after %s attempts; proposal task left unscheduled",
            lead.id,
            attempts_made + 1,
            extra=log_context,
        )
        return SagaResult(
            state=SagaState.UNSCHEDULED, task_id=str(task.id), crm_deal_id=payload.crm_deal_id
        )

    prep = schedule_prep(db, task, lead.id, payload.proposal_prep_minutes, appointment.start)
    return SagaResult(
        state=SagaState.SCHEDULED,
        task_id=str(task.id),
        crm_deal_id=payload.crm_deal_id,
        appointment=appointment,
        prep_event_id=str(prep.id),
    )
