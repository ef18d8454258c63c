"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database (fresh schema per test)
- Fake provider connectors recording every call
- AppContext wired to the fakes, and an HTTPX AsyncClient for the API
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Settings are cached on first use; configure the environment before any import
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode())

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from papwa_sync.connectors import ConnectorRegistry
from papwa_sync.connectors.base import (
    CrmContact,
    CrmDeal,
    CrmTask,
    DeleteResult,
    FetchResult,
    Lead,
    RemoteEvent,
    TokenGrant,
)
from papwa_sync.context import AppContext, build_context
from papwa_sync.core.config import get_settings
from papwa_sync.db.base import Base
import papwa_sync.db.models  # noqa: F401
from papwa_sync.db.enums import Provider
from papwa_sync.db.session import create_db_engine, create_session_factory
from papwa_sync.services.token_service import TokenManager

INTERNAL_SECRET = "test-internal-secret"

# Fixed clock for reconciliation tests
NOW = datetime(2025, 3, 18, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Fake connectors
# =============================================================================


class FakeTokenProvider:
    """Token endpoints shared by every fake connector."""

    def __init__(self):
        self.refresh_calls: list[str] = []
        self.revoked: list[str] = []
        self.refresh_error: Exception | None = None
        self.revoke_error: Exception | None = None
        self.grant = TokenGrant(
            access_token="refreshed-access-token",
            expires_at=NOW + timedelta(hours=1),
        )

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error:
            raise self.refresh_error
        return self.grant

    async def revoke_token(self, token: str) -> None:
        self.revoked.append(token)
        if self.revoke_error:
            raise self.revoke_error


class FakeCalendarConnector(FakeTokenProvider):
    def __init__(self):
        super().__init__()
        self.calendar_id = "joy-calendar"
        self.calendar_error: Exception | None = None
        self.calendar_lookups = 0
        self.remote_events: dict[str, list[RemoteEvent]] = {"primary": []}
        self.fetch_error: Exception | None = None
        self.fetch_calls: list[str] = []
        self.created: list[tuple[str, object]] = []
        self.create_error: Exception | None = None
        self.updated: list[tuple[str, str]] = []
        self.deleted: list[tuple[str, str]] = []
        self.gone: set[str] = set()

    async def find_or_create_calendar(self, access_token: str, name: str) -> str:
        self.calendar_lookups += 1
        if self.calendar_error:
            raise self.calendar_error
        return self.calendar_id

    async def fetch_calendar_events(self, access_token, calendar_id, start, end, *, max_results=100):
        self.fetch_calls.append(calendar_id)
        if self.fetch_error:
            raise self.fetch_error
        return list(self.remote_events.get(calendar_id, []))

    async def create_event(self, access_token, calendar_id, event) -> str:
        if self.create_error:
            raise self.create_error
        self.created.append((calendar_id, event))
        return f"remote-{len(self.created)}"

    async def update_event(self, access_token, calendar_id, remote_id, event) -> None:
        self.updated.append((calendar_id, remote_id))

    async def delete_event(self, access_token, calendar_id, remote_id) -> DeleteResult:
        self.deleted.append((calendar_id, remote_id))
        if remote_id in self.gone:
            return DeleteResult.ALREADY_GONE
        return DeleteResult.DELETED


class FakeCrmConnector(FakeTokenProvider):
    def __init__(self):
        super().__init__()
        self.deals = FetchResult[CrmDeal]()
        self.tasks = FetchResult[CrmTask]()
        self.contacts = FetchResult[CrmContact]()
        self.cursors: list[str | None] = []
        self.fetch_error: Exception | None = None
        self.deal_fields: dict[str, str] = {}
        self.created_deals: list[dict] = []
        self.create_error: Exception | None = None

    async def fetch_records(self, access_token, since_cursor):
        self.cursors.append(since_cursor)
        if self.fetch_error:
            raise self.fetch_error
        return self.deals

    async def fetch_tasks(self, access_token):
        return self.tasks

    async def fetch_contacts(self, access_token):
        return self.contacts

    async def discover_deal_fields(self, access_token) -> dict[str, str]:
        return dict(self.deal_fields)

    async def create_deal(self, access_token, record) -> str:
        if self.create_error:
            raise self.create_error
        self.created_deals.append(record)
        return f"deal-{len(self.created_deals)}"


class FakeLeadsConnector(FakeTokenProvider):
    def __init__(self):
        super().__init__()
        self.leads: list[Lead] = []
        self.not_modified = False
        self.fetch_error: Exception | None = None
        self.fetch_calls: list[tuple[str | None, str | None]] = []
        self.valid_tokens = {"good-token"}

    async def fetch_records(self, access_token, since_cursor, *, user_id=None):
        self.fetch_calls.append((since_cursor, user_id))
        if self.fetch_error:
            raise self.fetch_error
        if self.not_modified:
            return FetchResult(not_modified=True)
        return FetchResult(records=list(self.leads))

    async def verify_token(self, access_token) -> bool:
        return access_token in self.valid_tokens


class FakePlanner:
    def __init__(self):
        self.calls: list[tuple] = []

    async def replan(self, date: str, reason: str) -> None:
        self.calls.append(("replan", date, reason))

    async def morning_briefing(self) -> None:
        self.calls.append(("morning_briefing",))

    async def evening_review(self) -> None:
        self.calls.append(("evening_review",))

    async def weekly_plan(self) -> None:
        self.calls.append(("weekly_plan",))


class FakeNotifier:
    def __init__(self):
        self.sent: list[tuple] = []

    async def send(self, title, body, data=None) -> None:
        self.sent.append((title, body, data))


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def settings():
    return get_settings()


@pytest.fixture(scope="function")
def db_engine(settings):
    """Fresh in-memory database per test."""
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(db_engine) -> Generator[Session, None, None]:
    session = create_session_factory(db_engine)()
    yield session
    session.close()


# =============================================================================
# Connector / context fixtures
# =============================================================================


@pytest.fixture
def calendar_connector() -> FakeCalendarConnector:
    return FakeCalendarConnector()


@pytest.fixture
def crm_connector() -> FakeCrmConnector:
    return FakeCrmConnector()


@pytest.fixture
def leads_connector() -> FakeLeadsConnector:
    return FakeLeadsConnector()


@pytest.fixture
def connectors(calendar_connector, crm_connector, leads_connector) -> ConnectorRegistry:
    return ConnectorRegistry(
        calendar=calendar_connector, crm=crm_connector, leads=leads_connector
    )


@pytest.fixture
def tokens(db, connectors) -> TokenManager:
    return TokenManager(db, connectors)


@pytest.fixture
def connect_provider(tokens):
    """Connect a provider with a token valid for an hour past NOW (None = never expires)."""

    def _connect(provider: Provider, *, expires_in: int | None = 3600, config: dict | None = None):
        return tokens.connect(
            provider,
            access_token=f"{provider.value}-access-token",
            refresh_token=f"{provider.value}-refresh-token",
            expires_in=expires_in,
            config=config,
            now=NOW,
        )

    return _connect


@pytest.fixture
def planner() -> FakePlanner:
    return FakePlanner()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
async def ctx(settings, db_engine, connectors, planner, notifier) -> AsyncGenerator[AppContext, None]:
    # Any real HTTP from a test is a bug
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(599)),
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    context = build_context(
        settings,
        engine=db_engine,
        http=http,
        connectors=connectors,
        planner=planner,
        notifier=notifier,
    )
    yield context
    await http.aclose()


@pytest.fixture
async def client(ctx) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX AsyncClient bound to the API app."""
    from papwa_sync.main import create_app

    app = create_app(ctx)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def internal_headers() -> dict[str, str]:
    return {"X-Internal-Secret": INTERNAL_SECRET}
