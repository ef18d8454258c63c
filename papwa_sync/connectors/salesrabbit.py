"""SalesRabbit lead-tracker connector (API token auth, no OAuth)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from papwa_sync.connectors.base import FetchResult, Lead, TokenGrant
from papwa_sync.connectors.http import raise_for_status, send_request
from papwa_sync.core.config import Settings
from papwa_sync.core.errors import AuthError, RecordValidationError
from papwa_sync.db.enums import Provider

logger = logging.getLogger(__name__)

PROVIDER = Provider.LEADS.value
PAGE_SIZE = 100


def _custom_fields(raw: Any) -> dict[str, str]:
    """Accept both {"name": "value"} and [{"name": ..., "value": ...}] shapes."""
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items() if v not in (None, "")}
    fields: dict[str, str] = {}
    if isinstance(raw, list):
        for item in raw:
            if not isinstance(item, dict):
                continue
            name = item.get("name") or item.get("label")
            value = item.get("value")
            if name and value not in (None, ""):
                fields[str(name)] = str(value)
    return fields


def parse_lead(item: dict[str, Any]) -> Lead:
    if item.get("id") in (None, ""):
        raise RecordValidationError("Lead without id", provider=PROVIDER)
    return Lead(
        id=str(item["id"]),
        first_name=item.get("firstName"),
        last_name=item.get("lastName"),
        phone=item.get("phone"),
        email=item.get("email"),
        address=item.get("address") or item.get("street"),
        city=item.get("city"),
        state=item.get("state"),
        zip=item.get("zip"),
        status_name=item.get("statusName") or item.get("status"),
        notes=item.get("notes"),
        appointment_date=item.get("appointmentDate"),
        appointment_time=item.get("appointmentTime"),
        custom_fields=_custom_fields(item.get("customFields")),
    )


class SalesRabbitConnector:
    """Lead connector over the SalesRabbit REST API."""

    provider = Provider.LEADS

    def __init__(self, client: httpx.AsyncClient, settings: Settings):
        self._client = client
        self._settings = settings

    async def _request(
        self,
        access_token: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, Any]:
        request_headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        if headers:
            request_headers.update(headers)
        return await send_request(
            self._client,
            method,
            f"{self._settings.SALESRABBIT_API_URL.rstrip('/')}{path}",
            provider=PROVIDER,
            headers=request_headers,
            params=params,
        )

    async def fetch_records(
        self, access_token: str, since_cursor: str | None, *, user_id: str | None = None
    ) -> FetchResult[Lead]:
        """Most recently changed leads, optionally filtered to one owner."""
        params: dict[str, Any] = {"limit": str(PAGE_SIZE), "sortDir": "desc"}
        if user_id:
            params["userId"] = user_id
        headers = {"If-Modified-Since": since_cursor} if since_cursor else None
        status, payload = await self._request(
            access_token, "GET", "/leads", params=params, headers=headers
        )
        if status == 304:
            return FetchResult(not_modified=True)
        raise_for_status(status, provider=PROVIDER, action="lead list", payload=payload)

        items = payload.get("data") if isinstance(payload, dict) else payload
        leads: list[Lead] = []
        for item in items or []:
            try:
                leads.append(parse_lead(item))
            except RecordValidationError as exc:
                logger.warning("Skipping malformed lead: %s", exc)
        return FetchResult(records=leads)

    async def verify_token(self, access_token: str) -> bool:
        status, _ = await self._request(access_token, "GET", "/users/me")
        return 200 <= status < 300

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        raise AuthError("SalesRabbit API tokens cannot be refreshed", provider=PROVIDER)

    async def revoke_token(self, token: str) -> None:
        # API tokens are managed in the SalesRabbit admin UI; nothing to call.
        return None
