"""HTTP surface: health, provider webhooks, internal integration endpoints."""

import uuid
from datetime import datetime, timezone

import pytest

from papwa_sync.db.enums import JobName, Provider, QueueName
from papwa_sync.services import integration_service, job_service
from papwa_sync.services.webhook_service import enqueue_sync, handle_provider_webhook

GOOGLE_HEADERS = {"X-Goog-Channel-ID": "chan-1", "X-Goog-Resource-State": "exists"}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# =============================================================================
# Webhooks
# =============================================================================


@pytest.mark.asyncio
async def test_calendar_webhook_enqueues_sync(client, db, connect_provider):
    connect_provider(Provider.CALENDAR, config={"watch_channel_id": "chan-1"})

    response = await client.post("/webhooks/calendar", headers=GOOGLE_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["accepted"] is True
    job = job_service.get_job(db, uuid.UUID(body["job_id"]))
    assert job.queue == QueueName.SYNC.value
    assert job.name == JobName.CALENDAR_SYNC.value


@pytest.mark.asyncio
async def test_calendar_webhook_with_unknown_channel_is_rejected(client, connect_provider):
    connect_provider(Provider.CALENDAR, config={"watch_channel_id": "chan-1"})

    response = await client.post(
        "/webhooks/calendar",
        headers={"X-Goog-Channel-ID": "someone-else", "X-Goog-Resource-State": "exists"},
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_calendar_handshake_is_acknowledged_without_job(client, db, connect_provider):
    connect_provider(Provider.CALENDAR, config={"watch_channel_id": "chan-1"})

    response = await client.post(
        "/webhooks/calendar",
        headers={"X-Goog-Channel-ID": "chan-1", "X-Goog-Resource-State": "sync"},
    )

    assert response.json() == {"accepted": True, "job_id": None, "reason": "channel handshake"}
    assert job_service.list_jobs(db) == []


@pytest.mark.asyncio
async def test_webhook_for_disconnected_provider_is_ignored(client, db):
    response = await client.post("/webhooks/crm")

    assert response.status_code == 200
    assert response.json()["accepted"] is False
    assert job_service.list_jobs(db) == []


@pytest.mark.asyncio
async def test_webhook_for_unknown_provider_is_404(client):
    response = await client.post("/webhooks/dropbox")
    assert response.status_code == 404


def test_webhooks_in_same_minute_share_one_job(db, connect_provider):
    connect_provider(Provider.LEADS, expires_in=None)
    first_at = datetime(2025, 3, 18, 9, 0, 5, tzinfo=timezone.utc)
    second_at = datetime(2025, 3, 18, 9, 0, 50, tzinfo=timezone.utc)

    first = handle_provider_webhook(db, Provider.LEADS, {}, now=first_at)
    second = handle_provider_webhook(db, Provider.LEADS, {}, now=second_at)

    assert first.job.id == second.job.id
    assert first.job.idempotency_key == "webhook:leads:2025-03-18T09:00:00+00:00"


def test_manual_and_webhook_syncs_do_not_collide(db):
    at = datetime(2025, 3, 18, 9, 0, tzinfo=timezone.utc)

    manual = enqueue_sync(db, Provider.CRM, reason="manual", now=at)
    webhook = enqueue_sync(db, Provider.CRM, reason="webhook", now=at)

    assert manual.id != webhook.id


# =============================================================================
# Integrations (internal)
# =============================================================================


@pytest.mark.asyncio
async def test_integrations_require_secret(client):
    response = await client.get("/integrations", headers={"X-Internal-Secret": "wrong"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_integrations(client, internal_headers, connect_provider):
    connect_provider(Provider.CALENDAR)

    response = await client.get("/integrations", headers=internal_headers)

    assert response.status_code == 200
    statuses = {item["provider"]: item for item in response.json()}
    assert set(statuses) == {"calendar", "crm", "leads"}
    assert statuses["calendar"]["connected"] is True
    assert statuses["crm"]["connected"] is False


@pytest.mark.asyncio
async def test_unknown_integration_is_404(client, internal_headers):
    response = await client.get("/integrations/dropbox", headers=internal_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_connect_leads(client, db, internal_headers):
    response = await client.post(
        "/integrations/leads/connect",
        json={"api_token": "good-token", "user_id": "rep-7"},
        headers=internal_headers,
    )

    assert response.status_code == 200
    assert response.json()["connected"] is True
    state = integration_service.get_state(db, Provider.LEADS)
    assert state.config["user_id"] == "rep-7"


@pytest.mark.asyncio
async def test_connect_leads_with_rejected_token(client, internal_headers):
    response = await client.post(
        "/integrations/leads/connect", json={"api_token": "bad-token"}, headers=internal_headers
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_trigger_sync(client, internal_headers, connect_provider):
    not_connected = await client.post("/integrations/crm/sync", headers=internal_headers)
    assert not_connected.status_code == 409

    connect_provider(Provider.CRM)
    response = await client.post("/integrations/crm/sync", headers=internal_headers)

    assert response.status_code == 202
    body = response.json()
    assert body["queue"] == QueueName.SYNC.value
    assert body["name"] == JobName.CRM_SYNC.value


@pytest.mark.asyncio
async def test_disconnect(client, db, internal_headers, connect_provider, calendar_connector):
    connect_provider(Provider.CALENDAR)

    response = await client.post("/integrations/calendar/disconnect", headers=internal_headers)

    assert response.status_code == 200
    assert response.json()["connected"] is False
    assert calendar_connector.revoked == ["calendar-refresh-token"]
    db.expire_all()
    state = integration_service.get_state(db, Provider.CALENDAR)
    assert state.access_token is None
