"""Lead reconciliation: SalesRabbit leads into tasks and appointment blockers.

Also the trigger point for the callback workflow: a lead matching the
configured callback rule, not yet processed, gets its task marked processed
and a delayed callback workflow job enqueued.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from sqlalchemy.orm import Session

from papwa_sync.connectors.base import Lead, LeadsConnector
from papwa_sync.db.enums import (
    EventSource,
    JobName,
    Provider,
    QueueName,
    SyncStatus,
    TaskCategory,
    TaskPriority,
    TaskStatus,
)
from papwa_sync.db.models import IntegrationState, Task
from papwa_sync.schemas.callbacks import CallbackWorkflowPayload, LeadSnapshot
from papwa_sync.schemas.integration_config import CallbackTriggerConfig, LeadsConfig
from papwa_sync.schemas.metadata import EventMetadata, LeadTaskMetadata, merge_metadata
from papwa_sync.services import callback_saga_service, integration_service, job_service, record_service
from papwa_sync.services.sync_common import (
    RECORD_ERRORS,
    SyncOutcome,
    run_provider_tick,
    skip_record,
)
from papwa_sync.services.token_service import TokenManager

logger = logging.getLogger(__name__)

PROVIDER = Provider.LEADS
EXTERNAL_SOURCE = Provider.LEADS.value

# Lead status -> local task category
STATUS_TO_CATEGORY: dict[str, TaskCategory] = {
    "Appointment Set": TaskCategory.APPOINTMENT,
    "Appointment Completed": TaskCategory.FOLLOW_UP,
    "Not Home": TaskCategory.DOOR_KNOCKING,
    "Not Interested": TaskCategory.OTHER,
    "Sale Made": TaskCategory.ADMIN,
    "Follow Up": TaskCategory.FOLLOW_UP,
    "Knocked": TaskCategory.DOOR_KNOCKING,
    "Pending": TaskCategory.FOLLOW_UP,
    "Callback": TaskCategory.FOLLOW_UP,
}

# Lead status -> local task priority
STATUS_TO_PRIORITY: dict[str, TaskPriority] = {
    "Appointment Set": TaskPriority.HIGH,
    "Follow Up": TaskPriority.MEDIUM,
    "Appointment Completed": TaskPriority.MEDIUM,
    "Not Home": TaskPriority.LOW,
    "Sale Made": TaskPriority.LOW,
    "Pending": TaskPriority.MEDIUM,
    "Callback": TaskPriority.HIGH,
}

DEFAULT_STATUS = "Pending"
APPOINTMENT_STATUS = "Appointment Set"
DEFAULT_APPOINTMENT_TIME = time(9, 0)
APPOINTMENT_DURATION = timedelta(hours=1)
APPOINTMENT_COLOR = "blue"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def lead_task_external_id(lead_id: str) -> str:
    return f"sr_{lead_id}"


def lead_appointment_external_id(lead_id: str) -> str:
    return f"sr_appt_{lead_id}"


def status_of(lead: Lead) -> str:
    return lead.status_name or DEFAULT_STATUS


# =============================================================================
# Callback trigger
# =============================================================================


def matches_callback_rule(lead: Lead, rule: CallbackTriggerConfig) -> bool:
    """Status equality or custom-field match, both case-insensitive.

    An empty custom_field_value matches any non-empty value of the field.
    """
    if not rule.enabled:
        return False

    status = lead.status_name or ""
    if rule.status_name_match and status.lower() == rule.status_name_match.lower():
        return True

    if rule.custom_field_name:
        value = lead.custom_fields.get(rule.custom_field_name)
        if value:
            if not rule.custom_field_value:
                return True
            return value.lower() == rule.custom_field_value.lower()
    return False


def _lead_snapshot(lead: Lead) -> LeadSnapshot:
    return LeadSnapshot(
        id=lead.id,
        first_name=lead.first_name,
        last_name=lead.last_name,
        phone=lead.phone,
        email=lead.email,
        address=lead.address,
        city=lead.city,
        state=lead.state,
        zip=lead.zip,
        notes=lead.notes,
        custom_fields=dict(lead.custom_fields),
    )


def maybe_trigger_callback(
    db: Session,
    task: Task,
    lead: Lead,
    rule: CallbackTriggerConfig,
    outcome: SyncOutcome,
    *,
    now: datetime,
) -> bool:
    """Mark the task processed and enqueue the callback workflow once per lead."""
    meta = LeadTaskMetadata.model_validate(task.meta or {})
    if meta.callback_processed or not matches_callback_rule(lead, rule):
        return False

    payload = CallbackWorkflowPayload(
        lead=_lead_snapshot(lead),
        proposal_prep_minutes=rule.proposal_prep_minutes,
    )
    # The flag and the job insert land in the same commit
    task.meta = merge_metadata(task.meta, LeadTaskMetadata(callback_processed=True))
    callback_saga_service.enqueue_callback_workflow(db, payload, now=now)
    db.commit()
    outcome.callbacks_enqueued += 1
    logger.info("Callback workflow queued for lead %s", lead.id)
    return True


# =============================================================================
# Leads -> tasks / appointments
# =============================================================================


def apply_lead(db: Session, lead: Lead, outcome: SyncOutcome) -> Task:
    """Create or update the task mirroring one lead."""
    status = status_of(lead)
    external_id = lead_task_external_id(lead.id)
    contact_name = lead.contact_name
    location = lead.location
    title = f"{status}: {contact_name or 'Lead'}"
    category = STATUS_TO_CATEGORY.get(status, TaskCategory.OTHER).value
    priority = STATUS_TO_PRIORITY.get(status, TaskPriority.MEDIUM).value

    existing = record_service.get_task_by_external(db, external_id, EXTERNAL_SOURCE)
    if existing:
        changes = {
            "title": title,
            "category": category,
            "priority": priority,
            "contact_name": contact_name or existing.contact_name,
            "contact_phone": lead.phone or existing.contact_phone,
            "location": location or existing.location,
            "meta": merge_metadata(
                existing.meta, LeadTaskMetadata(lead_id=lead.id, lead_status=status)
            ),
        }
        if record_service.apply_changes(existing, changes):
            db.commit()
            outcome.updated += 1
        return existing

    task = record_service.create_task(
        db,
        title=title,
        description=lead.notes or f"Lead: {contact_name}",
        status=TaskStatus.INBOX.value,
        category=category,
        priority=priority,
        contact_name=contact_name or None,
        contact_phone=lead.phone,
        location=location or None,
        external_id=external_id,
        external_source=EXTERNAL_SOURCE,
        meta=LeadTaskMetadata(
            lead_id=lead.id, lead_status=status, lead_email=lead.email
        ).model_dump(mode="json", exclude_defaults=True),
    )
    db.commit()
    outcome.created += 1
    return task


def appointment_start(lead: Lead, tz: tzinfo) -> datetime | None:
    """Lead appointment start in UTC; date-only appointments default to 09:00 local."""
    if not lead.appointment_date:
        return None
    raw = lead.appointment_date.strip()
    if "T" in raw:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=tz)
        return parsed.astimezone(timezone.utc)

    day = date.fromisoformat(raw[:10])
    at = DEFAULT_APPOINTMENT_TIME
    if lead.appointment_time:
        at = time.fromisoformat(lead.appointment_time.strip())
    return datetime.combine(day, at, tzinfo=tz).astimezone(timezone.utc)


def apply_appointment(
    db: Session, lead: Lead, tz: tzinfo, outcome: SyncOutcome, *, now: datetime
) -> bool:
    """Create a blocker for a future lead appointment. Returns True if created."""
    if not lead.appointment_date:
        return False
    if status_of(lead) != APPOINTMENT_STATUS and not lead.appointment_time:
        return False

    external_id = lead_appointment_external_id(lead.id)
    if record_service.get_event_by_external(db, EventSource.LEADS, external_id):
        return False

    start = appointment_start(lead, tz)
    if start is None or start <= now:
        return False

    contact_name = lead.contact_name
    record_service.create_event(
        db,
        title=f"Appointment: {contact_name or 'Lead'}",
        description=lead.notes,
        start_time=start,
        end_time=start + APPOINTMENT_DURATION,
        location=lead.location or None,
        source=EventSource.LEADS.value,
        external_id=external_id,
        is_blocker=True,
        color=APPOINTMENT_COLOR,
        meta=EventMetadata(category=TaskCategory.APPOINTMENT.value, lead_id=lead.id).model_dump(
            mode="json", exclude_defaults=True
        ),
    )
    db.commit()
    outcome.new_appointments += 1
    return True


# =============================================================================
# Tick
# =============================================================================


async def sync_leads(
    db: Session,
    tokens: TokenManager,
    connector: LeadsConnector,
    *,
    tz: tzinfo,
    now: datetime | None = None,
) -> SyncOutcome:
    """
    One lead tick. New future appointments enqueue an immediate replan.
    """
    now = now or _now_utc()

    async def body(access_token: str, state: IntegrationState, outcome: SyncOutcome) -> None:
        config = integration_service.get_config(state, LeadsConfig)
        result = await connector.fetch_records(
            access_token, state.sync_cursor, user_id=config.user_id
        )
        if result.not_modified:
            outcome.status = SyncStatus.NOT_MODIFIED
            integration_service.mark_synced(db, state, now=now)
            return

        for lead in result.records:
            try:
                task = apply_lead(db, lead, outcome)
                maybe_trigger_callback(db, task, lead, config.callback_trigger, outcome, now=now)
                apply_appointment(db, lead, tz, outcome, now=now)
            except RECORD_ERRORS as exc:
                skip_record(db, outcome, lead.id, exc)

        state = integration_service.get_state(db, PROVIDER)
        integration_service.mark_synced(db, state, cursor=now.isoformat(), now=now)

        if outcome.new_appointments:
            enqueue_replan(db, reason="new lead appointments", now=now, tz=tz)

    return await run_provider_tick(db, tokens, PROVIDER, body, now=now)


def enqueue_replan(db: Session, *, reason: str, now: datetime, tz: tzinfo):
    """Queue an immediate replan of today on the planning queue."""
    today = now.astimezone(tz).date().isoformat()
    return job_service.enqueue(
        db,
        QueueName.PLANNING,
        JobName.REPLAN,
        {"date": today, "reason": reason},
        now=now,
    )
