"""Job service - enqueueing, claiming and retry bookkeeping for queued jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from papwa_sync.db.enums import BackoffType, JobName, JobStatus, QueueName
from papwa_sync.db.models import Job

logger = logging.getLogger(__name__)

BackoffFunction = Callable[[int], int]

# Fallback when a job asks for custom backoff but none is registered
DEFAULT_CUSTOM_BACKOFF_MS = 60 * 60 * 1000


@dataclass(frozen=True)
class BackoffPolicy:
    """How long to wait before retrying a failed attempt.

    standard: delay_ms * 2 ** (attempts_made - 1)
    custom:   a function of attempts_made registered for the job name
    """

    type: BackoffType = BackoffType.STANDARD
    delay_ms: int = 0

    @classmethod
    def custom(cls) -> "BackoffPolicy":
        return cls(type=BackoffType.CUSTOM)

    @classmethod
    def exponential(cls, delay_ms: int) -> "BackoffPolicy":
        return cls(type=BackoffType.STANDARD, delay_ms=delay_ms)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def enqueue(
    db: Session,
    queue: QueueName,
    name: JobName,
    payload: dict | None = None,
    *,
    delay_ms: int = 0,
    attempts: int = 1,
    backoff: BackoffPolicy | None = None,
    idempotency_key: str | None = None,
    schedule_key: str | None = None,
    now: datetime | None = None,
) -> Job:
    """
    Enqueue a job on a queue.

    delay_ms postpones the first attempt; attempts is the total attempt
    budget. With an idempotency_key, a second enqueue returns the job that
    already holds the key instead of creating a duplicate.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    if delay_ms < 0:
        raise ValueError("delay_ms must be >= 0")

    if idempotency_key:
        existing = get_job_by_idempotency_key(db, idempotency_key)
        if existing:
            return existing

    backoff = backoff or BackoffPolicy()
    now = now or _now_utc()
    job = Job(
        queue=queue.value,
        name=name.value,
        payload=payload or {},
        run_at=now + timedelta(milliseconds=delay_ms),
        status=JobStatus.PENDING.value,
        attempts=0,
        max_attempts=attempts,
        backoff_type=backoff.type.value,
        backoff_delay_ms=backoff.delay_ms,
        idempotency_key=idempotency_key,
        schedule_key=schedule_key,
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race on the idempotency key
        db.rollback()
        existing = get_job_by_idempotency_key(db, idempotency_key) if idempotency_key else None
        if existing:
            return existing
        raise
    db.refresh(job)
    logger.info(
        "Enqueued job %s (queue=%s, name=%s, delay_ms=%s, attempts=%s)",
        job.id,
        job.queue,
        job.name,
        delay_ms,
        attempts,
    )
    return job


def get_job(db: Session, job_id: UUID) -> Job | None:
    return db.query(Job).filter(Job.id == job_id).first()


def get_job_by_idempotency_key(db: Session, key: str) -> Job | None:
    return db.query(Job).filter(Job.idempotency_key == key).first()


def list_jobs(
    db: Session,
    *,
    queue: QueueName | None = None,
    name: JobName | None = None,
    status: JobStatus | None = None,
    limit: int = 50,
) -> list[Job]:
    """List jobs with optional filters, newest first."""
    query = db.query(Job)
    if queue:
        query = query.filter(Job.queue == queue.value)
    if name:
        query = query.filter(Job.name == name.value)
    if status:
        query = query.filter(Job.status == status.value)
    return query.order_by(Job.created_at.desc()).limit(limit).all()


def get_pending_jobs(
    db: Session, queue: QueueName, limit: int = 10, now: datetime | None = None
) -> list[Job]:
    """Pending jobs on `queue` whose run_at is due, oldest first."""
    now = now or _now_utc()
    return (
        db.query(Job)
        .filter(
            Job.queue == queue.value,
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
        .all()
    )


def claim_pending_jobs(
    db: Session, queue: QueueName, limit: int = 10, now: datetime | None = None
) -> list[Job]:
    """
    Atomically claim due jobs: mark them running and count the attempt.

    Uses SKIP LOCKED on postgres so concurrent workers never claim the same
    row; other backends ignore the hint.
    """
    if limit <= 0:
        return []
    now = now or _now_utc()
    jobs = (
        db.query(Job)
        .filter(
            Job.queue == queue.value,
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for job in jobs:
        job.status = JobStatus.RUNNING.value
        job.attempts += 1
        job.started_at = now
    db.commit()
    return jobs


def mark_job_completed(db: Session, job: Job, now: datetime | None = None) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = now or _now_utc()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def compute_retry_delay_ms(
    job: Job, custom_backoffs: dict[str, BackoffFunction] | None = None
) -> int:
    """Delay before the next attempt, given job.attempts attempts made so far."""
    attempts_made = max(job.attempts, 1)
    if job.backoff_type == BackoffType.CUSTOM.value:
        func = (custom_backoffs or {}).get(job.name)
        if func is None:
            logger.warning("No custom backoff registered for %s; using default", job.name)
            return DEFAULT_CUSTOM_BACKOFF_MS
        return func(attempts_made)
    return job.backoff_delay_ms * 2 ** (attempts_made - 1)


def mark_job_failed(
    db: Session,
    job: Job,
    error: str,
    *,
    retry_delay_ms: int = 0,
    now: datetime | None = None,
) -> Job:
    """
    Record a failed attempt.

    If attempts < max_attempts, reset to pending and push run_at out by
    retry_delay_ms. Otherwise the job is failed for good.
    """
    job.last_error = error[:2000]
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = (now or _now_utc()) + timedelta(milliseconds=retry_delay_ms)
    else:
        job.status = JobStatus.FAILED.value
        job.completed_at = now or _now_utc()
    db.commit()
    db.refresh(job)
    return job


def will_retry(job: Job) -> bool:
    return job.status == JobStatus.PENDING.value


def requeue_stale_running_jobs(
    db: Session, older_than: timedelta, now: datetime | None = None
) -> int:
    """Return jobs stuck in running (worker died mid-job) to pending."""
    now = now or _now_utc()
    cutoff = now - older_than
    stale = (
        db.query(Job)
        .filter(Job.status == JobStatus.RUNNING.value, Job.started_at < cutoff)
        .all()
    )
    for job in stale:
        job.status = JobStatus.PENDING.value if job.attempts < job.max_attempts else JobStatus.FAILED.value
        job.last_error = "worker stopped before the job finished"
    db.commit()
    return len(stale)
