"""Process-wide handle passed to every component.

Built once at process start (worker, API, CLI) and threaded through
explicitly; nothing else holds clients or connections.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from papwa_sync.collaborators import Notifier, Planner
from papwa_sync.connectors import ConnectorRegistry, build_connectors
from papwa_sync.core.config import Settings, get_settings
from papwa_sync.db.enums import Provider
from papwa_sync.db.session import create_db_engine, create_session_factory


@dataclass
class AppContext:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    http: httpx.AsyncClient
    connectors: ConnectorRegistry
    planner: Planner | None = None
    notifier: Notifier | None = None
    # One sync tick per provider at a time within this process
    sync_locks: dict[Provider, asyncio.Lock] = field(default_factory=dict)

    def session(self) -> Session:
        return self.session_factory()

    def sync_lock(self, provider: Provider) -> asyncio.Lock:
        return self.sync_locks.setdefault(provider, asyncio.Lock())

    async def aclose(self) -> None:
        await self.http.aclose()
        self.engine.dispose()


def build_context(
    settings: Settings | None = None,
    *,
    engine: Engine | None = None,
    http: httpx.AsyncClient | None = None,
    connectors: ConnectorRegistry | None = None,
    planner: Planner | None = None,
    notifier: Notifier | None = None,
) -> AppContext:
    settings = settings or get_settings()
    engine = engine or create_db_engine(settings.DATABASE_URL)
    http = http or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    return AppContext(
        settings=settings,
        engine=engine,
        session_factory=create_session_factory(engine),
        http=http,
        connectors=connectors or build_connectors(http, settings),
        planner=planner,
        notifier=notifier,
    )
