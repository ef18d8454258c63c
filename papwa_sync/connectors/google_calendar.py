"""Google Calendar connector.

Features:
- singleEvents=true so recurring events arrive as individual instances
- pagination via nextPageToken, capped to prevent runaway loops
- all-day detection (date vs dateTime)
- events created by this app carry a private extended property holding the
  local event id, so pulls can recognise them
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

import httpx

from papwa_sync.connectors.base import DeleteResult, EventDraft, RemoteEvent, TokenGrant
from papwa_sync.connectors.http import (
    format_datetime,
    parse_datetime,
    raise_for_status,
    send_request,
)
from papwa_sync.core.config import Settings
from papwa_sync.core.errors import AuthError, RecordValidationError, TransientNetworkError
from papwa_sync.db.enums import Provider

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

# Private extended property carrying the local event id on pushed events
APP_EVENT_MARKER = "joyEventId"

MAX_PAGES = 10

PROVIDER = Provider.CALENDAR.value


def _calendar_path(calendar_id: str) -> str:
    return f"/calendars/{quote(calendar_id, safe='@.')}"


def parse_remote_event(item: dict[str, Any]) -> RemoteEvent:
    start_data = item.get("start") or {}
    end_data = item.get("end") or {}
    is_all_day = "date" in start_data and "dateTime" not in start_data

    private = (item.get("extendedProperties") or {}).get("private") or {}

    return RemoteEvent(
        id=item.get("id", ""),
        title=item.get("summary"),
        start=None if is_all_day else parse_datetime(start_data.get("dateTime")),
        end=None if is_all_day else parse_datetime(end_data.get("dateTime")),
        description=item.get("description"),
        location=item.get("location"),
        status=item.get("status"),
        all_day=is_all_day,
        app_event_id=private.get(APP_EVENT_MARKER),
    )


def _event_body(event: EventDraft) -> dict[str, Any]:
    body: dict[str, Any] = {
        "summary": event.title,
        "start": {"dateTime": format_datetime(event.start), "timeZone": "UTC"},
        "end": {"dateTime": format_datetime(event.end), "timeZone": "UTC"},
        "extendedProperties": {"private": {APP_EVENT_MARKER: event.local_event_id}},
    }
    if event.description:
        body["description"] = event.description
    if event.location:
        body["location"] = event.location
    return body


class GoogleCalendarConnector:
    """Calendar connector over the Google Calendar v3 REST API."""

    provider = Provider.CALENDAR

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
    ) -> tuple[int, Any]:
        return await send_request(
            self._client,
            method,
            f"{GOOGLE_CALENDAR_API_BASE}{path}",
            provider=PROVIDER,
            headers={"Authorization": f"Bearer {access_token}"},
            params=params,
            json_body=json_body,
        )

    # =========================================================================
    # Calendars
    # =========================================================================

    async def find_or_create_calendar(self, access_token: str, name: str) -> str:
        """Return the id of the owned calendar named `name`, creating it if absent."""
        page_token: str | None = None
        for _ in range(MAX_PAGES):
            params = {"minAccessRole": "owner"}
            if page_token:
                params["pageToken"] = page_token
            status, payload = await self._request(
                access_token, "GET", "/users/me/calendarList", params=params
            )
            raise_for_status(status, provider=PROVIDER, action="calendar list", payload=payload)
            payload = payload or {}
            for item in payload.get("items", []):
                if item.get("summary") == name and item.get("accessRole") == "owner":
                    return item["id"]
            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        status, payload = await self._request(
            access_token,
            "POST",
            "/calendars",
            json_body={
                "summary": name,
                "description": "Time blocks planned by Papwa",
                "timeZone": self._settings.TIMEZONE,
            },
        )
        raise_for_status(status, provider=PROVIDER, action="calendar create", payload=payload)
        if not payload or not payload.get("id"):
            raise RecordValidationError("Calendar create returned no id", provider=PROVIDER)
        logger.info("Created calendar %r", name)
        return payload["id"]

    # =========================================================================
    # Events
    # =========================================================================

    async def fetch_calendar_events(
        self,
        access_token: str,
        calendar_id: str,
        start: datetime,
        end: datetime,
        *,
        max_results: int = 100,
    ) -> list[RemoteEvent]:
        """List events in [start, end). Raises on any non-2xx page."""
        events: list[RemoteEvent] = []
        page_token: str | None = None
        for _ in range(MAX_PAGES):
            params = {
                "timeMin": format_datetime(start),
                "timeMax": format_datetime(end),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": str(max_results),
            }
            if page_token:
                params["pageToken"] = page_token
            status, payload = await self._request(
                access_token, "GET", f"{_calendar_path(calendar_id)}/events", params=params
            )
            raise_for_status(status, provider=PROVIDER, action="event list", payload=payload)
            payload = payload or {}
            for item in payload.get("items", []):
                if item.get("id"):
                    events.append(parse_remote_event(item))
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
        else:
            # A partial listing would look like remote deletions to drift cleanup
            raise TransientNetworkError(
                f"Event list exceeded {MAX_PAGES} pages", provider=PROVIDER
            )
        return events

    async def create_event(
        self, access_token: str, calendar_id: str, event: EventDraft
    ) -> str:
        status, payload = await self._request(
            access_token,
            "POST",
            f"{_calendar_path(calendar_id)}/events",
            json_body=_event_body(event),
        )
        raise_for_status(status, provider=PROVIDER, action="event create", payload=payload)
        if not payload or not payload.get("id"):
            raise RecordValidationError("Event create returned no id", provider=PROVIDER)
        return payload["id"]

    async def update_event(
        self, access_token: str, calendar_id: str, remote_id: str, event: EventDraft
    ) -> None:
        status, payload = await self._request(
            access_token,
            "PATCH",
            f"{_calendar_path(calendar_id)}/events/{quote(remote_id, safe='')}",
            json_body=_event_body(event),
        )
        raise_for_status(status, provider=PROVIDER, action="event update", payload=payload)

    async def delete_event(
        self, access_token: str, calendar_id: str, remote_id: str
    ) -> DeleteResult:
        status, payload = await self._request(
            access_token,
            "DELETE",
            f"{_calendar_path(calendar_id)}/events/{quote(remote_id, safe='')}",
        )
        if status in (404, 410):
            return DeleteResult.ALREADY_GONE
        raise_for_status(status, provider=PROVIDER, action="event delete", payload=payload)
        return DeleteResult.DELETED

    # =========================================================================
    # Tokens
    # =========================================================================

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        status, payload = await send_request(
            self._client,
            "POST",
            GOOGLE_TOKEN_URL,
            provider=PROVIDER,
            form={
                "client_id": self._settings.GOOGLE_CLIENT_ID,
                "client_secret": self._settings.GOOGLE_CLIENT_SECRET,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if 400 <= status < 500:
            raise AuthError(
                f"Google token refresh rejected (status={status})",
                provider=PROVIDER,
                status_code=status,
            )
        raise_for_status(status, provider=PROVIDER, action="token refresh", payload=payload)
        if not payload or not payload.get("access_token"):
            raise AuthError("Google token refresh returned no access token", provider=PROVIDER)
        expires_in = int(payload.get("expires_in") or 3600)
        return TokenGrant(
            access_token=payload["access_token"],
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            refresh_token=payload.get("refresh_token"),
        )

    async def revoke_token(self, token: str) -> None:
        status, payload = await send_request(
            self._client,
            "POST",
            GOOGLE_REVOKE_URL,
            provider=PROVIDER,
            form={"token": token},
        )
        raise_for_status(status, provider=PROVIDER, action="token revoke", payload=payload)
