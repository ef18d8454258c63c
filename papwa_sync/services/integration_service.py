"""IntegrationState persistence: lookup, activation, typed config, sync stamps."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TypeVar

from sqlalchemy.orm import Session

from papwa_sync.db.enums import Provider
from papwa_sync.db.models import IntegrationState
from papwa_sync.schemas.integration_config import (
    CalendarRoutingConfig,
    CrmConfig,
    LeadsConfig,
    dump_config,
    load_config,
)

logger = logging.getLogger(__name__)

ConfigT = TypeVar("ConfigT", CalendarRoutingConfig, CrmConfig, LeadsConfig)

CONFIG_MODELS: dict[Provider, type] = {
    Provider.CALENDAR: CalendarRoutingConfig,
    Provider.CRM: CrmConfig,
    Provider.LEADS: LeadsConfig,
}


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def get_state(db: Session, provider: Provider) -> IntegrationState | None:
    return (
        db.query(IntegrationState)
        .filter(IntegrationState.provider == provider.value)
        .first()
    )


def get_active_state(db: Session, provider: Provider) -> IntegrationState | None:
    return (
        db.query(IntegrationState)
        .filter(
            IntegrationState.provider == provider.value,
            IntegrationState.is_active.is_(True),
        )
        .first()
    )


def is_active(db: Session, provider: Provider) -> bool:
    return get_active_state(db, provider) is not None


def get_or_create_state(db: Session, provider: Provider) -> IntegrationState:
    state = get_state(db, provider)
    if state:
        return state
    state = IntegrationState(provider=provider.value, config={}, is_active=False)
    db.add(state)
    db.flush()
    return state


def get_config(state: IntegrationState | None, model: type[ConfigT]) -> ConfigT:
    return load_config(model, state.config if state else None)


def save_config(db: Session, state: IntegrationState, config) -> None:
    """Persist a typed config back onto the state row (whole-value replace)."""
    state.config = dump_config(config)
    db.commit()


def mark_synced(
    db: Session,
    state: IntegrationState,
    *,
    cursor: str | None = None,
    now: datetime | None = None,
) -> None:
    """Stamp last_sync_at and, when given, advance the sync cursor."""
    state.last_sync_at = now or _now_utc()
    state.last_error = None
    if cursor is not None:
        state.sync_cursor = cursor
    db.commit()


def record_error(db: Session, state: IntegrationState, error: str) -> None:
    state.last_error = error[:1000]
    db.commit()


def deactivate(db: Session, state: IntegrationState, reason: str) -> None:
    """Soft-disable an integration; the user must reconnect it."""
    state.is_active = False
    state.last_error = reason[:1000]
    db.commit()
    logger.warning(
        "Integration %s deactivated: %s", state.provider, reason
    )


def get_status(db: Session, provider: Provider) -> dict:
    state = get_state(db, provider)
    if not state:
        return {"provider": provider.value, "connected": False, "last_sync_at": None}
    return {
        "provider": provider.value,
        "connected": bool(state.is_active),
        "last_sync_at": state.last_sync_at.isoformat() if state.last_sync_at else None,
        "last_error": state.last_error,
    }
