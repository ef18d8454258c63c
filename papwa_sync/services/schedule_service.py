"""Repeatable job schedules.

Schedules are rows keyed by an explicit constant. Registering a key deletes
any row under it before inserting, so re-running setup never yields two
ticks for one key. Next run times come from croniter, evaluated in the
configured local timezone and stored in UTC.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo

from croniter import croniter
from sqlalchemy.orm import Session

from papwa_sync.db.enums import JobName, QueueName
from papwa_sync.db.models import Job, JobSchedule
from papwa_sync.services import job_service

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def next_run(cron: str, *, now: datetime | None = None, tz: tzinfo = timezone.utc) -> datetime:
    """Compute the next run time for a cron expression after `now` (UTC result)."""
    anchor = (now or _now_utc()).astimezone(tz)
    return croniter(cron, anchor).get_next(datetime).astimezone(timezone.utc)


def get_schedule(db: Session, key: str) -> JobSchedule | None:
    return db.query(JobSchedule).filter(JobSchedule.key == key).first()


def list_schedules(db: Session) -> list[JobSchedule]:
    return db.query(JobSchedule).order_by(JobSchedule.key).all()


def remove_schedule(db: Session, key: str) -> bool:
    deleted = db.query(JobSchedule).filter(JobSchedule.key == key).delete()
    db.commit()
    return bool(deleted)


def remove_all_schedules(db: Session) -> int:
    deleted = db.query(JobSchedule).delete()
    db.commit()
    return deleted


def register_schedule(
    db: Session,
    key: str,
    cron: str,
    queue: QueueName,
    job_name: JobName,
    payload: dict | None = None,
    *,
    now: datetime | None = None,
    tz: tzinfo = timezone.utc,
) -> JobSchedule:
    """Register a repeatable job under `key`, replacing any previous registration."""
    if not croniter.is_valid(cron):
        raise ValueError(f"Invalid cron expression for {key}: {cron!r}")

    db.query(JobSchedule).filter(JobSchedule.key == key).delete()
    schedule = JobSchedule(
        key=key,
        cron=cron,
        queue=queue.value,
        job_name=job_name.value,
        payload=payload or {},
        next_run_at=next_run(cron, now=now, tz=tz),
    )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    logger.info("Registered schedule %s (%s) -> %s/%s", key, cron, queue.value, job_name.value)
    return schedule


def fire_due_schedules(
    db: Session, *, now: datetime | None = None, tz: tzinfo = timezone.utc
) -> list[Job]:
    """
    Enqueue one job for every schedule whose next_run_at has passed.

    Missed ticks (worker down) collapse into a single job. The idempotency
    key pins each tick, so two schedulers firing the same tick enqueue once.
    """
    now = now or _now_utc()
    due = (
        db.query(JobSchedule)
        .filter(JobSchedule.next_run_at <= now)
        .order_by(JobSchedule.next_run_at)
        .all()
    )
    fired: list[Job] = []
    for schedule in due:
        tick = schedule.next_run_at
        job = job_service.enqueue(
            db,
            QueueName(schedule.queue),
            JobName(schedule.job_name),
            dict(schedule.payload or {}),
            idempotency_key=f"schedule:{schedule.key}:{tick.isoformat()}",
            schedule_key=schedule.key,
            now=now,
        )
        schedule.last_run_at = now
        schedule.next_run_at = next_run(schedule.cron, now=now, tz=tz)
        db.commit()
        fired.append(job)
    return fired
