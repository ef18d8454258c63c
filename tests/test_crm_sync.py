"""CRM reconciliation: deals, tasks and contacts into local tasks."""

from datetime import datetime, timezone

import pytest

from papwa_sync.connectors.base import CrmContact, CrmDeal, CrmTask, FetchResult
from papwa_sync.core.errors import RateLimitError
from papwa_sync.db.enums import Provider, SyncStatus
from papwa_sync.db.models import Task
from papwa_sync.services import integration_service, record_service
from papwa_sync.services.crm_sync_service import sync_crm
from tests.conftest import NOW


def _deal(**overrides) -> CrmDeal:
    fields = {
        "id": "d-1",
        "name": "Doe Residence",
        "stage": "Qualification",
        "contact_name": "Jane Doe",
        "amount": 25000.0,
        "closing_date": "2025-04-30",
    }
    fields.update(overrides)
    return CrmDeal(**fields)


async def _tick(db, tokens, connector):
    return await sync_crm(db, tokens, connector, now=NOW)


def _crm_tasks(db):
    return db.query(Task).filter(Task.external_source == Provider.CRM.value).all()


@pytest.mark.asyncio
async def test_deal_becomes_task(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM)
    crm_connector.deals = FetchResult(records=[_deal()])

    outcome = await _tick(db, tokens, crm_connector)

    assert outcome.created == 1
    task = record_service.get_task_by_external(db, "d-1", Provider.CRM.value)
    assert task.title == "Qualification: Doe Residence"
    assert task.category == "follow_up"
    assert task.priority == "low"
    assert task.status == "inbox"
    assert task.deadline == datetime(2025, 4, 30, tzinfo=timezone.utc)
    assert task.meta["crm_amount"] == 25000.0


@pytest.mark.asyncio
async def test_stage_change_updates_existing_task(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM)
    crm_connector.deals = FetchResult(records=[_deal()])
    await _tick(db, tokens, crm_connector)

    crm_connector.deals = FetchResult(records=[_deal(stage="Installation")])
    outcome = await _tick(db, tokens, crm_connector)

    assert outcome.updated == 1
    tasks = _crm_tasks(db)
    assert len(tasks) == 1
    assert tasks[0].priority == "urgent"
    assert tasks[0].category == "appointment"


@pytest.mark.asyncio
async def test_closed_deal_without_task_is_not_created(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM)
    crm_connector.deals = FetchResult(records=[_deal(stage="Closed Lost")])

    outcome = await _tick(db, tokens, crm_connector)

    assert outcome.created == 0
    assert _crm_tasks(db) == []


@pytest.mark.asyncio
async def test_crm_tasks_skip_completed(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM)
    crm_connector.tasks = FetchResult(
        records=[
            CrmTask(id="t-1", subject="Call Jane", priority="Highest", due_date="2025-03-19"),
            CrmTask(id="t-2", subject="Old", status="Completed"),
        ]
    )

    await _tick(db, tokens, crm_connector)

    tasks = _crm_tasks(db)
    assert [task.external_id for task in tasks] == ["task_t-1"]
    assert tasks[0].priority == "urgent"


@pytest.mark.asyncio
async def test_contacts_fill_missing_phone_and_location(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM)
    crm_connector.deals = FetchResult(records=[_deal()])
    crm_connector.contacts = FetchResult(
        records=[
            CrmContact(
                id="c-1",
                full_name="Jane Doe",
                phone="555-0100",
                mobile="555-0199",
                street="123 Main Street",
                city="Springfield",
            )
        ]
    )

    await _tick(db, tokens, crm_connector)

    task = record_service.get_task_by_external(db, "d-1", Provider.CRM.value)
    assert task.contact_phone == "555-0199"
    assert task.location == "123 Main Street, Springfield"


@pytest.mark.asyncio
async def test_cursor_advances_only_after_success(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM)

    await _tick(db, tokens, crm_connector)
    crm_connector.fetch_error = RateLimitError("429", provider="crm", status_code=429)
    outcome = await _tick(db, tokens, crm_connector)

    assert outcome.status == SyncStatus.ABORTED
    assert crm_connector.cursors == [None, NOW.isoformat()]
    state = integration_service.get_state(db, Provider.CRM)
    assert state.sync_cursor == NOW.isoformat()
    assert state.is_active is True


@pytest.mark.asyncio
async def test_not_modified_keeps_cursor(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM)
    crm_connector.deals = FetchResult(not_modified=True)

    outcome = await _tick(db, tokens, crm_connector)

    assert outcome.status == SyncStatus.NOT_MODIFIED
    assert integration_service.get_state(db, Provider.CRM).sync_cursor is None


@pytest.mark.asyncio
async def test_unparseable_deal_is_skipped(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM)
    crm_connector.deals = FetchResult(
        records=[_deal(id="bad", closing_date="someday"), _deal(id="good")]
    )

    outcome = await _tick(db, tokens, crm_connector)

    assert outcome.skipped == 1
    assert outcome.created == 1
    assert record_service.get_task_by_external(db, "good", Provider.CRM.value) is not None
