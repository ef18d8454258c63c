"""TokenManager: refresh buffer, failure deactivation, connect/disconnect."""

from datetime import timedelta

import pytest
from sqlalchemy import text

from papwa_sync.connectors.base import TokenGrant
from papwa_sync.core.errors import AuthError, TransientNetworkError
from papwa_sync.db.enums import Provider
from papwa_sync.services import integration_service
from papwa_sync.services.token_service import needs_refresh
from tests.conftest import NOW


def test_needs_refresh_boundaries():
    assert needs_refresh(NOW + timedelta(minutes=4), NOW) is True
    assert needs_refresh(NOW + timedelta(minutes=10), NOW) is False
    assert needs_refresh(NOW - timedelta(minutes=1), NOW) is True
    # Exactly at the buffer edge is still valid
    assert needs_refresh(NOW + timedelta(minutes=5), NOW) is False


def test_null_expiry_never_needs_refresh():
    assert needs_refresh(None, NOW) is False


@pytest.mark.asyncio
async def test_token_expiring_within_buffer_is_refreshed(
    db, tokens, calendar_connector, connect_provider
):
    connect_provider(Provider.CALENDAR, expires_in=4 * 60)

    token = await tokens.get_valid_token(Provider.CALENDAR, now=NOW)

    assert token == "refreshed-access-token"
    assert calendar_connector.refresh_calls == ["calendar-refresh-token"]
    state = integration_service.get_state(db, Provider.CALENDAR)
    assert state.access_token == "refreshed-access-token"
    assert state.token_expires_at == NOW + timedelta(hours=1)


@pytest.mark.asyncio
async def test_token_outside_buffer_is_returned_as_is(tokens, calendar_connector, connect_provider):
    connect_provider(Provider.CALENDAR, expires_in=10 * 60)

    token = await tokens.get_valid_token(Provider.CALENDAR, now=NOW)

    assert token == "calendar-access-token"
    assert calendar_connector.refresh_calls == []


@pytest.mark.asyncio
async def test_rotated_refresh_token_is_stored(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM, expires_in=60)
    crm_connector.grant = TokenGrant(
        access_token="new-access", expires_at=NOW + timedelta(hours=1), refresh_token="new-refresh"
    )

    await tokens.get_valid_token(Provider.CRM, now=NOW)

    state = integration_service.get_state(db, Provider.CRM)
    assert state.refresh_token == "new-refresh"


@pytest.mark.asyncio
async def test_refresh_failure_deactivates_integration(
    db, tokens, calendar_connector, connect_provider
):
    connect_provider(Provider.CALENDAR, expires_in=60)
    calendar_connector.refresh_error = AuthError("invalid_grant", provider="calendar")

    with pytest.raises(AuthError):
        await tokens.get_valid_token(Provider.CALENDAR, now=NOW)

    state = integration_service.get_state(db, Provider.CALENDAR)
    assert state.is_active is False
    assert "token refresh failed" in state.last_error


@pytest.mark.asyncio
async def test_transient_refresh_failure_also_deactivates(
    db, tokens, calendar_connector, connect_provider
):
    connect_provider(Provider.CALENDAR, expires_in=60)
    calendar_connector.refresh_error = TransientNetworkError("timeout")

    with pytest.raises(AuthError):
        await tokens.get_valid_token(Provider.CALENDAR, now=NOW)

    assert integration_service.is_active(db, Provider.CALENDAR) is False


@pytest.mark.asyncio
async def test_expired_token_without_refresh_token_deactivates(db, tokens):
    tokens.connect(Provider.CRM, access_token="only-access", expires_in=60, now=NOW)

    with pytest.raises(AuthError):
        await tokens.get_valid_token(Provider.CRM, now=NOW)

    assert integration_service.is_active(db, Provider.CRM) is False


@pytest.mark.asyncio
async def test_inactive_integration_raises_auth_error(tokens):
    with pytest.raises(AuthError):
        await tokens.get_valid_token(Provider.LEADS, now=NOW)


def test_tokens_are_encrypted_at_rest(db, connect_provider):
    connect_provider(Provider.CALENDAR)

    raw = db.execute(
        text("SELECT access_token, refresh_token FROM integration_state WHERE provider = 'calendar'")
    ).one()

    assert raw.access_token != "calendar-access-token"
    assert raw.refresh_token != "calendar-refresh-token"
    state = integration_service.get_state(db, Provider.CALENDAR)
    assert state.access_token == "calendar-access-token"


@pytest.mark.asyncio
async def test_disconnect_revokes_and_clears(db, tokens, calendar_connector, connect_provider):
    state = connect_provider(Provider.CALENDAR)
    state.sync_cursor = "cursor-1"
    db.commit()

    await tokens.disconnect(Provider.CALENDAR)

    assert calendar_connector.revoked == ["calendar-refresh-token"]
    state = integration_service.get_state(db, Provider.CALENDAR)
    assert state.is_active is False
    assert state.access_token is None
    assert state.refresh_token is None
    assert state.token_expires_at is None
    assert state.sync_cursor is None


@pytest.mark.asyncio
async def test_disconnect_clears_even_when_revoke_fails(db, tokens, crm_connector, connect_provider):
    connect_provider(Provider.CRM)
    crm_connector.revoke_error = TransientNetworkError("revoke endpoint down")

    await tokens.disconnect(Provider.CRM)

    state = integration_service.get_state(db, Provider.CRM)
    assert state.is_active is False
    assert state.access_token is None


@pytest.mark.asyncio
async def test_connect_api_token_verifies_first(db, tokens):
    assert await tokens.connect_api_token("bad-token") is False
    assert integration_service.get_state(db, Provider.LEADS) is None

    assert await tokens.connect_api_token("good-token") is True
    state = integration_service.get_state(db, Provider.LEADS)
    assert state.is_active is True
    assert state.token_expires_at is None


def test_reconnect_keeps_existing_config(db, tokens, connect_provider):
    connect_provider(Provider.CALENDAR, config={"work_calendar_id": "work"})

    tokens.connect(Provider.CALENDAR, access_token="again", config={"watch_channel_id": "chan"})

    state = integration_service.get_state(db, Provider.CALENDAR)
    assert state.config["work_calendar_id"] == "work"
    assert state.config["watch_channel_id"] == "chan"
    assert state.refresh_token == "calendar-refresh-token"
