"""CRM reconciliation: Bigin deals, tasks and contacts into local tasks."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from papwa_sync.connectors.base import CrmConnector, CrmContact, CrmDeal, CrmTask
from papwa_sync.connectors.http import parse_datetime
from papwa_sync.db.enums import Provider, SyncStatus, TaskCategory, TaskPriority, TaskStatus
from papwa_sync.db.models import IntegrationState
from papwa_sync.services import integration_service, record_service
from papwa_sync.services.sync_common import (
    RECORD_ERRORS,
    SyncOutcome,
    run_provider_tick,
    skip_record,
)
from papwa_sync.services.token_service import TokenManager

logger = logging.getLogger(__name__)

PROVIDER = Provider.CRM
EXTERNAL_SOURCE = Provider.CRM.value

# Pipeline stage -> local task category
STAGE_TO_CATEGORY: dict[str, TaskCategory] = {
    "Qualification": TaskCategory.FOLLOW_UP,
    "Needs Analysis": TaskCategory.FOLLOW_UP,
    "Appointment Set": TaskCategory.APPOINTMENT,
    "Appointment Scheduled": TaskCategory.APPOINTMENT,
    "Proposal": TaskCategory.FOLLOW_UP,
    "Negotiation": TaskCategory.FOLLOW_UP,
    "Closed Won": TaskCategory.ADMIN,
    "Closed Lost": TaskCategory.ADMIN,
    "Follow Up": TaskCategory.FOLLOW_UP,
    "Site Survey": TaskCategory.APPOINTMENT,
    "Installation": TaskCategory.APPOINTMENT,
    "Design Review": TaskCategory.ADMIN,
}

# Pipeline stage -> local task priority
STAGE_TO_PRIORITY: dict[str, TaskPriority] = {
    "Appointment Set": TaskPriority.HIGH,
    "Appointment Scheduled": TaskPriority.HIGH,
    "Negotiation": TaskPriority.HIGH,
    "Site Survey": TaskPriority.HIGH,
    "Installation": TaskPriority.URGENT,
    "Proposal": TaskPriority.MEDIUM,
    "Follow Up": TaskPriority.MEDIUM,
    "Qualification": TaskPriority.LOW,
    "Needs Analysis": TaskPriority.LOW,
}

CLOSED_STAGES = frozenset({"Closed Won", "Closed Lost"})

TASK_PRIORITY_MAP: dict[str, TaskPriority] = {
    "Highest": TaskPriority.URGENT,
    "High": TaskPriority.HIGH,
    "Low": TaskPriority.LOW,
}

COMPLETED_TASK_STATUS = "Completed"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def stage_category(stage: str) -> TaskCategory:
    return STAGE_TO_CATEGORY.get(stage, TaskCategory.OTHER)


def stage_priority(stage: str) -> TaskPriority:
    return STAGE_TO_PRIORITY.get(stage, TaskPriority.MEDIUM)


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = parse_datetime(value if "T" in value else f"{value}T00:00:00")
    if parsed is None:
        raise ValueError(f"unparseable date {value!r}")
    return parsed


# =============================================================================
# Deals
# =============================================================================


def apply_deal(db: Session, deal: CrmDeal, outcome: SyncOutcome) -> None:
    """Create or update the task mirroring one deal."""
    title = f"{deal.stage}: {deal.name}"
    deadline = _parse_date(deal.closing_date)
    deal_meta = {
        "crm_stage": deal.stage,
        "crm_amount": deal.amount,
        "crm_deal_id": deal.id,
    }

    existing = record_service.get_task_by_external(db, deal.id, EXTERNAL_SOURCE)
    if existing:
        changes = {
            "title": title,
            "category": stage_category(deal.stage).value,
            "priority": stage_priority(deal.stage).value,
            "contact_name": deal.contact_name or existing.contact_name,
            "contact_phone": deal.phone or existing.contact_phone,
            "location": deal.address or existing.location,
            "description": deal.description or existing.description,
            "deadline": deadline or existing.deadline,
            "meta": {**(existing.meta or {}), **deal_meta},
        }
        if record_service.apply_changes(existing, changes):
            db.commit()
            outcome.updated += 1
        return

    # Closed deals only flow through as updates to tasks we already have
    if deal.stage in CLOSED_STAGES:
        return

    record_service.create_task(
        db,
        title=title,
        description=deal.description or f"CRM deal: {deal.name}",
        status=TaskStatus.INBOX.value,
        category=stage_category(deal.stage).value,
        priority=stage_priority(deal.stage).value,
        contact_name=deal.contact_name,
        contact_phone=deal.phone,
        location=deal.address,
        deadline=deadline,
        external_id=deal.id,
        external_source=EXTERNAL_SOURCE,
        meta=deal_meta,
    )
    db.commit()
    outcome.created += 1


# =============================================================================
# CRM tasks
# =============================================================================


def crm_task_external_id(task: CrmTask) -> str:
    return f"task_{task.id}"


def apply_crm_task(db: Session, crm_task: CrmTask, outcome: SyncOutcome) -> None:
    if crm_task.status == COMPLETED_TASK_STATUS:
        return

    external_id = crm_task_external_id(crm_task)
    priority = TASK_PRIORITY_MAP.get(crm_task.priority or "", TaskPriority.MEDIUM)
    deadline = _parse_date(crm_task.due_date)

    existing = record_service.get_task_by_external(db, external_id, EXTERNAL_SOURCE)
    if existing:
        changes = {
            "title": crm_task.subject,
            "priority": priority.value,
            "deadline": deadline or existing.deadline,
            "description": crm_task.description or existing.description,
        }
        if record_service.apply_changes(existing, changes):
            db.commit()
            outcome.updated += 1
        return

    record_service.create_task(
        db,
        title=crm_task.subject,
        description=crm_task.description,
        status=TaskStatus.INBOX.value,
        category=TaskCategory.FOLLOW_UP.value,
        priority=priority.value,
        deadline=deadline,
        external_id=external_id,
        external_source=EXTERNAL_SOURCE,
        meta={"crm_task_id": crm_task.id, "crm_related_to": crm_task.related_to},
    )
    db.commit()
    outcome.created += 1


# =============================================================================
# Contacts
# =============================================================================


def apply_contact(db: Session, contact: CrmContact, outcome: SyncOutcome) -> None:
    """Fill missing phone/location on CRM tasks for this contact."""
    if not contact.full_name:
        return
    phone = contact.mobile or contact.phone
    location = ", ".join(part for part in (contact.street, contact.city, contact.state) if part)
    if not phone and not location:
        return

    for task in record_service.list_tasks_by_contact(db, EXTERNAL_SOURCE, contact.full_name):
        changes = {}
        if phone and not task.contact_phone:
            changes["contact_phone"] = phone
        if location and not task.location:
            changes["location"] = location
        if changes and record_service.apply_changes(task, changes):
            db.commit()
            outcome.updated += 1


# =============================================================================
# Tick
# =============================================================================


async def sync_crm(
    db: Session,
    tokens: TokenManager,
    connector: CrmConnector,
    *,
    now: datetime | None = None,
) -> SyncOutcome:
    """
    One CRM tick: deals since the cursor, then tasks, then contacts.

    The cursor advances to the tick start only after a successful deals
    fetch; a 304 leaves it where it was.
    """
    now = now or _now_utc()

    async def body(access_token: str, state: IntegrationState, outcome: SyncOutcome) -> None:
        deals = await connector.fetch_records(access_token, state.sync_cursor)
        for deal in deals.records:
            try:
                apply_deal(db, deal, outcome)
            except RECORD_ERRORS as exc:
                skip_record(db, outcome, deal.id, exc)

        crm_tasks = await connector.fetch_tasks(access_token)
        for crm_task in crm_tasks.records:
            try:
                apply_crm_task(db, crm_task, outcome)
            except RECORD_ERRORS as exc:
                skip_record(db, outcome, crm_task_external_id(crm_task), exc)

        contacts = await connector.fetch_contacts(access_token)
        for contact in contacts.records:
            try:
                apply_contact(db, contact, outcome)
            except RECORD_ERRORS as exc:
                skip_record(db, outcome, contact.id, exc)

        if deals.not_modified and outcome.local_writes == 0:
            outcome.status = SyncStatus.NOT_MODIFIED

        state = integration_service.get_state(db, PROVIDER)
        cursor = None if deals.not_modified else now.isoformat()
        integration_service.mark_synced(db, state, cursor=cursor, now=now)

    return await run_provider_tick(db, tokens, PROVIDER, body, now=now)
