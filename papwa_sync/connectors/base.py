"""Connector contract shared by the calendar, CRM and lead-tracker adapters.

Connectors are stateless over an injected httpx client. They take the access
token per call (the TokenManager owns token lifecycle) and raise the typed
errors in papwa_sync.core.errors for anything other than success.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

T = TypeVar("T")


@dataclass
class TokenGrant:
    access_token: str
    expires_at: datetime | None
    # Some providers rotate the refresh token on every refresh
    refresh_token: str | None = None


@dataclass
class FetchResult(Generic[T]):
    """A list call result. not_modified means the provider answered 304."""

    records: list[T] = field(default_factory=list)
    not_modified: bool = False


class DeleteResult(str, Enum):
    DELETED = "deleted"
    ALREADY_GONE = "already_gone"


@dataclass
class RemoteEvent:
    id: str
    title: str | None
    start: datetime | None
    end: datetime | None
    description: str | None = None
    location: str | None = None
    status: str | None = None
    all_day: bool = False
    # Local event id when the event was created by this app's push
    app_event_id: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"


@dataclass
class EventDraft:
    """Fields pushed to the calendar provider for a local event."""

    title: str
    start: datetime
    end: datetime
    local_event_id: str
    description: str | None = None
    location: str | None = None


@dataclass
class CrmDeal:
    id: str
    name: str
    stage: str
    contact_name: str | None = None
    phone: str | None = None
    email: str | None = None
    amount: float | None = None
    closing_date: str | None = None
    description: str | None = None
    address: str | None = None


@dataclass
class CrmTask:
    id: str
    subject: str
    status: str | None = None
    priority: str | None = None
    due_date: str | None = None
    description: str | None = None
    related_to: str | None = None


@dataclass
class CrmContact:
    id: str
    full_name: str | None
    phone: str | None = None
    mobile: str | None = None
    email: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None


@dataclass
class Lead:
    id: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    status_name: str | None = None
    notes: str | None = None
    appointment_date: str | None = None
    appointment_time: str | None = None
    custom_fields: dict[str, str] = field(default_factory=dict)

    @property
    def contact_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def location(self) -> str:
        return ", ".join(part for part in (self.address, self.city, self.state) if part)


class TokenConnector(Protocol):
    async def refresh_token(self, refresh_token: str) -> TokenGrant: ...

    async def revoke_token(self, token: str) -> None: ...


class CalendarConnector(TokenConnector, Protocol):
    async def find_or_create_calendar(self, access_token: str, name: str) -> str: ...

    async def fetch_calendar_events(
        self,
        access_token: str,
        calendar_id: str,
        start: datetime,
        end: datetime,
        *,
        max_results: int = 100,
    ) -> list[RemoteEvent]: ...

    async def create_event(
        self, access_token: str, calendar_id: str, event: EventDraft
    ) -> str: ...

    async def update_event(
        self, access_token: str, calendar_id: str, remote_id: str, event: EventDraft
    ) -> None: ...

    async def delete_event(
        self, access_token: str, calendar_id: str, remote_id: str
    ) -> DeleteResult: ...


class CrmConnector(TokenConnector, Protocol):
    async def fetch_records(
        self, access_token: str, since_cursor: str | None
    ) -> FetchResult[CrmDeal]: ...

    async def fetch_tasks(self, access_token: str) -> FetchResult[CrmTask]: ...

    async def fetch_contacts(self, access_token: str) -> FetchResult[CrmContact]: ...

    async def discover_deal_fields(self, access_token: str) -> dict[str, str]: ...

    async def create_deal(self, access_token: str, record: dict[str, Any]) -> str: ...


class LeadsConnector(TokenConnector, Protocol):
    async def fetch_records(
        self, access_token: str, since_cursor: str | None, *, user_id: str | None = None
    ) -> FetchResult[Lead]: ...

    async def verify_token(self, access_token: str) -> bool: ...
