"""Credential lifecycle: hand out valid tokens, refresh, connect, disconnect.

Refresh happens when the token is within REFRESH_BUFFER of expiry, so a
token never looks valid at check time and then expires mid-call. Any refresh
failure deactivates the integration; nothing retries it automatically.

Known gap: two workers refreshing the same provider concurrently both call
the provider. The later write wins; both tokens stay valid at Google/Zoho.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import NoReturn

from sqlalchemy.orm import Session

from papwa_sync.connectors import ConnectorRegistry
from papwa_sync.connectors.base import TokenGrant
from papwa_sync.core.errors import AuthError, SyncError
from papwa_sync.core.structured_logging import build_log_context
from papwa_sync.db.enums import Provider
from papwa_sync.db.models import IntegrationState
from papwa_sync.services import integration_service

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def needs_refresh(expires_at: datetime | None, now: datetime) -> bool:
    """True when now is past (expires_at - 5 minutes).

    A NULL expiry marks a non-expiring credential.
    """
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return now > expires_at - REFRESH_BUFFER


class TokenManager:
    """Owns every read and write of IntegrationState token material."""

    def __init__(self, db: Session, connectors: ConnectorRegistry):
        self.db = db
        self.connectors = connectors

    async def get_valid_token(
        self, provider: Provider, *, now: datetime | None = None
    ) -> str:
        """Return a usable access token, refreshing it first if needed.

        Raises:
            AuthError: integration inactive, missing token, or refresh failed.
                The integration is left inactive.
        """
        now = now or _now_utc()
        state = integration_service.get_active_state(self.db, provider)
        if not state:
            raise AuthError(f"{provider.value} integration is not connected", provider=provider.value)

        if not state.access_token:
            self._fail(state, "no access token stored")

        if not needs_refresh(state.token_expires_at, now):
            return state.access_token

        if not state.refresh_token:
            self._fail(state, "token expired and no refresh token stored")

        connector = self.connectors.for_provider(provider)
        try:
            grant = await connector.refresh_token(state.refresh_token)
        except (SyncError, ValueError) as exc:
            self._fail(state, f"token refresh failed: {exc}")

        self._store_grant(state, grant)
        logger.info(
            "Refreshed %s access token",
            provider.value,
            extra=build_log_context(provider=provider.value),
        )
        return grant.access_token

    def _store_grant(self, state: IntegrationState, grant: TokenGrant) -> None:
        state.access_token = grant.access_token
        state.token_expires_at = grant.expires_at
        if grant.refresh_token:
            state.refresh_token = grant.refresh_token
        self.db.commit()

    def _fail(self, state: IntegrationState, reason: str) -> NoReturn:
        integration_service.deactivate(self.db, state, reason)
        raise AuthError(
            f"{state.provider} requires reconnect: {reason}", provider=state.provider
        )

    def deactivate_for(self, provider: Provider, reason: str) -> None:
        """Flip an integration off after the provider rejected its token."""
        state = integration_service.get_state(self.db, provider)
        if state and state.is_active:
            integration_service.deactivate(self.db, state, reason)

    # =========================================================================
    # Connect / disconnect
    # =========================================================================

    def connect(
        self,
        provider: Provider,
        *,
        access_token: str,
        refresh_token: str | None = None,
        expires_in: int | None = None,
        config: dict | None = None,
        now: datetime | None = None,
    ) -> IntegrationState:
        """Store fresh credentials and activate the integration."""
        now = now or _now_utc()
        state = integration_service.get_or_create_state(self.db, provider)
        state.access_token = access_token
        if refresh_token:
            state.refresh_token = refresh_token
        state.token_expires_at = (
            now + timedelta(seconds=expires_in) if expires_in is not None else None
        )
        if config is not None:
            state.config = {**(state.config or {}), **config}
        state.is_active = True
        state.last_error = None
        self.db.commit()
        self.db.refresh(state)
        logger.info("Connected %s integration", provider.value)
        return state

    async def connect_api_token(self, api_token: str) -> bool:
        """Verify and store the lead tracker's non-expiring API token."""
        verified = await self.connectors.leads.verify_token(api_token)
        if not verified:
            logger.warning("Lead tracker API token rejected during connect")
            return False
        self.connect(Provider.LEADS, access_token=api_token)
        return True

    async def disconnect(self, provider: Provider) -> None:
        """Revoke remotely (best-effort), then always clear local credentials."""
        state = integration_service.get_state(self.db, provider)
        if not state:
            return

        token = state.refresh_token or state.access_token
        if token:
            connector = self.connectors.for_provider(provider)
            try:
                await connector.revoke_token(token)
            except SyncError as exc:
                logger.warning(
                    "Token revocation failed for %s (continuing): %s",
                    provider.value,
                    exc,
                    extra=build_log_context(provider=provider.value),
                )

        state.access_token = None
        state.refresh_token = None
        state.token_expires_at = None
        state.sync_cursor = None
        state.is_active = False
        self.db.commit()
        logger.info("Disconnected %s integration", provider.value)
