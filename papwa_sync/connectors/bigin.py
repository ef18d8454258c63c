"""Zoho Bigin CRM connector (deals, tasks, contacts)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from papwa_sync.connectors.base import (
    CrmContact,
    CrmDeal,
    CrmTask,
    FetchResult,
    TokenGrant,
)
from papwa_sync.connectors.http import raise_for_status, send_request
from papwa_sync.core.config import Settings
from papwa_sync.core.errors import AuthError, RecordValidationError
from papwa_sync.db.enums import Provider

logger = logging.getLogger(__name__)

PROVIDER = Provider.CRM.value

DEAL_FIELDS = (
    "Deal_Name,Stage,Contact_Name,Phone,Email,Amount,Closing_Date,"
    "Description,Modified_Time,Address"
)
TASK_FIELDS = "Subject,Status,Priority,Due_Date,Description,What_Id,Modified_Time"
CONTACT_FIELDS = (
    "Full_Name,First_Name,Last_Name,Phone,Mobile,Email,"
    "Mailing_Street,Mailing_City,Mailing_State"
)
PAGE_SIZE = 100


def _lookup_name(value: Any) -> str | None:
    """Bigin lookup fields arrive as {"name": ..., "id": ...}."""
    if isinstance(value, dict):
        return value.get("name")
    return value or None


def parse_deal(item: dict[str, Any]) -> CrmDeal:
    if not item.get("id") or not item.get("Deal_Name") or not item.get("Stage"):
        raise RecordValidationError(
            f"Deal {item.get('id')!r} missing id, name or stage", provider=PROVIDER
        )
    amount = item.get("Amount")
    return CrmDeal(
        id=str(item["id"]),
        name=item["Deal_Name"],
        stage=item["Stage"],
        contact_name=_lookup_name(item.get("Contact_Name")),
        phone=item.get("Phone"),
        email=item.get("Email"),
        amount=float(amount) if amount not in (None, "") else None,
        closing_date=item.get("Closing_Date"),
        description=item.get("Description"),
        address=item.get("Address"),
    )


def parse_task(item: dict[str, Any]) -> CrmTask:
    if not item.get("id") or not item.get("Subject"):
        raise RecordValidationError(
            f"Task {item.get('id')!r} missing id or subject", provider=PROVIDER
        )
    return CrmTask(
        id=str(item["id"]),
        subject=item["Subject"],
        status=item.get("Status"),
        priority=item.get("Priority"),
        due_date=item.get("Due_Date"),
        description=item.get("Description"),
        related_to=_lookup_name(item.get("What_Id")),
    )


def parse_contact(item: dict[str, Any]) -> CrmContact:
    return CrmContact(
        id=str(item.get("id", "")),
        full_name=item.get("Full_Name"),
        phone=item.get("Phone"),
        mobile=item.get("Mobile"),
        email=item.get("Email"),
        street=item.get("Mailing_Street"),
        city=item.get("Mailing_City"),
        state=item.get("Mailing_State"),
    )


class BiginConnector:
    """CRM connector over the Bigin v2 REST API."""

    provider = Provider.CRM

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
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, Any]:
        request_headers = {"Authorization": f"Zoho-oauthtoken {access_token}"}
        if headers:
            request_headers.update(headers)
        return await send_request(
            self._client,
            method,
            f"{self._settings.zoho_api_base}{path}",
            provider=PROVIDER,
            headers=request_headers,
            params=params,
            json_body=json_body,
        )

    async def _list(
        self,
        access_token: str,
        module: str,
        fields: str,
        parser,
        *,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        status, payload = await self._request(
            access_token,
            "GET",
            f"/{module}",
            params={"fields": fields, "per_page": str(PAGE_SIZE)},
            headers=headers,
        )
        if status == 304:
            return FetchResult(not_modified=True)
        raise_for_status(status, provider=PROVIDER, action=f"{module} list", payload=payload)

        records = []
        for item in (payload or {}).get("data") or []:
            try:
                records.append(parser(item))
            except RecordValidationError as exc:
                logger.warning("Skipping malformed %s record: %s", module, exc)
        return FetchResult(records=records)

    # =========================================================================
    # Records
    # =========================================================================

    async def fetch_records(
        self, access_token: str, since_cursor: str | None
    ) -> FetchResult[CrmDeal]:
        """Deals modified since the cursor (304 when nothing changed)."""
        headers = {"If-Modified-Since": since_cursor} if since_cursor else None
        return await self._list(access_token, "Deals", DEAL_FIELDS, parse_deal, headers=headers)

    async def fetch_tasks(self, access_token: str) -> FetchResult[CrmTask]:
        return await self._list(access_token, "Tasks", TASK_FIELDS, parse_task)

    async def fetch_contacts(self, access_token: str) -> FetchResult[CrmContact]:
        return await self._list(access_token, "Contacts", CONTACT_FIELDS, parse_contact)

    async def discover_deal_fields(self, access_token: str) -> dict[str, str]:
        """Map deal field api_name -> display label."""
        status, payload = await self._request(
            access_token, "GET", "/settings/fields", params={"module": "Deals"}
        )
        raise_for_status(status, provider=PROVIDER, action="deal field discovery", payload=payload)
        return {
            field["api_name"]: field.get("field_label", "")
            for field in (payload or {}).get("fields") or []
            if field.get("api_name")
        }

    async def create_deal(self, access_token: str, record: dict[str, Any]) -> str:
        status, payload = await self._request(
            access_token, "POST", "/Deals", json_body={"data": [record]}
        )
        raise_for_status(status, provider=PROVIDER, action="deal create", payload=payload)
        created = ((payload or {}).get("data") or [{}])[0]
        deal_id = (created.get("details") or {}).get("id")
        if not deal_id:
            raise RecordValidationError(
                f"Deal create returned no id (code={created.get('code')})", provider=PROVIDER
            )
        return str(deal_id)

    # =========================================================================
    # Tokens
    # =========================================================================

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        status, payload = await send_request(
            self._client,
            "POST",
            f"{self._settings.ZOHO_ACCOUNTS_URL.rstrip('/')}/oauth/v2/token",
            provider=PROVIDER,
            form={
                "grant_type": "refresh_token",
                "client_id": self._settings.ZOHO_CLIENT_ID,
                "client_secret": self._settings.ZOHO_CLIENT_SECRET,
                "refresh_token": refresh_token,
            },
        )
        if 400 <= status < 500:
            raise AuthError(
                f"Zoho token refresh rejected (status={status})",
                provider=PROVIDER,
                status_code=status,
            )
        raise_for_status(status, provider=PROVIDER, action="token refresh", payload=payload)
        # Zoho reports refresh errors with a 200 and an "error" field
        if not payload or not payload.get("access_token"):
            error = (payload or {}).get("error", "missing access_token")
            raise AuthError(f"Zoho token refresh failed: {error}", provider=PROVIDER)
        expires_in = int(payload.get("expires_in") or 3600)
        return TokenGrant(
            access_token=payload["access_token"],
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )

    async def revoke_token(self, token: str) -> None:
        status, payload = await send_request(
            self._client,
            "POST",
            f"{self._settings.ZOHO_ACCOUNTS_URL.rstrip('/')}/oauth/v2/token/revoke",
            provider=PROVIDER,
            params={"token": token},
        )
        raise_for_status(status, provider=PROVIDER, action="token revoke", payload=payload)
