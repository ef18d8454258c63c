"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from papwa_sync.db.base import Base
from papwa_sync.db.enums import DEFAULT_JOB_STATUS, BackoffType
from papwa_sync.db.types import JSONType
from papwa_sync.db.utils import utcnow


class Job(Base):
    """
    Background job for async processing.

    Used for: provider syncs, the callback workflow, planning runs.
    Worker dispatchers poll each queue for pending jobs whose run_at is due.
    `attempts` counts attempts made so far (incremented when claimed).
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_pending", "queue", "status", "run_at"),
        Index(
            "uq_job_idempotency",
            "idempotency_key",
            unique=True,
            postgresql_where=text("idempotency_key IS NOT NULL"),
            sqlite_where=text("idempotency_key IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    queue: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DEFAULT_JOB_STATUS.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    backoff_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BackoffType.STANDARD.value
    )
    backoff_delay_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Set when the job was fired by a repeatable schedule
    schedule_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    # Set on every claim; staleness of a running job is measured from here
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)


class JobSchedule(Base):
    """
    Repeatable (cron) registration under an explicit stable key.

    Re-registering a key replaces the row, so setup can run repeatedly
    without producing duplicate ticks.
    """

    __tablename__ = "job_schedules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    cron: Mapped[str] = mapped_column(String(100), nullable=False)
    queue: Mapped[str] = mapped_column(String(30), nullable=False)
    job_name: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    next_run_at: Mapped[datetime] = mapped_column(nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
