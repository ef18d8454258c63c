"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from papwa_sync.db.base import Base
from papwa_sync.db.types import EncryptedString, JSONType
from papwa_sync.db.utils import utcnow


class IntegrationState(Base):
    """
    Credentials and sync bookkeeping for one external provider.

    One row per provider. Rows are soft-disabled (is_active=False) on
    auth failure or disconnect, never deleted.
    """

    __tablename__ = "integration_state"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)

    # Tokens are encrypted at rest
    access_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    refresh_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)
    # NULL means the credential does not expire (API-token providers)
    token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Opaque watermark, only ever advanced after a successful fetch
    sync_cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    config: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, onupdate=utcnow, nullable=False
    )
