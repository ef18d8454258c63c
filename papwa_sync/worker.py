"""
Background worker for queued and scheduled jobs.

Usage:
    papwa-sync worker
    python -m papwa_sync.worker

One process hosts every queue. Each queue gets its own dispatcher with its
own concurrency limit; the planning queue runs one job at a time. A
scheduler loop turns due cron registrations into jobs on the same queues.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from uuid import UUID

from papwa_sync.context import AppContext, build_context
from papwa_sync.core.config import Settings, get_settings
from papwa_sync.core.errors import SagaRetryableError
from papwa_sync.core.structured_logging import build_log_context, configure_logging
from papwa_sync.db.enums import QueueName
from papwa_sync.jobs.registry import CUSTOM_BACKOFFS, resolve_job_handler
from papwa_sync.services import job_service, schedule_service
from papwa_sync.services.sync_common import resolve_timezone

logger = logging.getLogger(__name__)

# Planner mutations must never interleave
PLANNING_QUEUE_CONCURRENCY = 1
STALE_RUNNING_AFTER = timedelta(hours=1)


def queue_concurrency(settings: Settings) -> dict[QueueName, int]:
    return {
        QueueName.PLANNING: PLANNING_QUEUE_CONCURRENCY,
        QueueName.SYNC: max(settings.SYNC_QUEUE_CONCURRENCY, 1),
        QueueName.NOTIFICATION: max(settings.NOTIFICATION_QUEUE_CONCURRENCY, 1),
    }


def enabled_queues(settings: Settings) -> list[QueueName]:
    """Queues this process serves (WORKER_QUEUES, default all)."""
    names = [name.strip() for name in settings.WORKER_QUEUES.split(",") if name.strip()]
    if not names:
        return list(QueueName)
    return [QueueName(name) for name in names]


async def process_job(ctx: AppContext, db, job) -> None:
    """Process a single job through its registered handler."""
    logger.info(
        "Processing job %s (queue=%s, name=%s, attempt=%s/%s)",
        job.id,
        job.queue,
        job.name,
        job.attempts,
        job.max_attempts,
    )
    handler = resolve_job_handler(job.name)
    await handler(ctx, db, job)


async def run_job(ctx: AppContext, job_id: UUID) -> None:
    """Run one claimed job in its own session and record the outcome."""
    with ctx.session() as db:
        job = job_service.get_job(db, job_id)
        if job is None:
            logger.warning("Claimed job %s disappeared", job_id)
            return
        log_context = build_log_context(
            queue=job.queue, job_id=str(job.id), job_name=job.name, attempt=job.attempts
        )

        try:
            await process_job(ctx, db, job)
        except SagaRetryableError as e:
            db.rollback()
            delay_ms = job_service.compute_retry_delay_ms(job, CUSTOM_BACKOFFS)
            job_service.mark_job_failed(db, job, str(e), retry_delay_ms=delay_ms)
            logger.info(
                "Job %s (%s/%s) retry scheduled in %sms: %s",
                job.id,
                job.queue,
                job.name,
                delay_ms,
                e,
                extra=log_context,
            )
            return
        except Exception as e:
            db.rollback()
            delay_ms = job_service.compute_retry_delay_ms(job, CUSTOM_BACKOFFS)
            job_service.mark_job_failed(
                db, job, f"{type(e).__name__}: {e}", retry_delay_ms=delay_ms
            )
            if job_service.will_retry(job):
                logger.warning(
                    "Job %s (%s/%s) failed, retrying in %sms: %s",
                    job.id,
                    job.queue,
                    job.name,
                    delay_ms,
                    e,
                    extra=log_context,
                )
            else:
                logger.error(
                    "Job %s (%s/%s) failed permanently: %s",
                    job.id,
                    job.queue,
                    job.name,
                    e,
                    extra=log_context,
                    exc_info=True,
                )
            return

        job_service.mark_job_completed(db, job)
        logger.info("Job %s (%s/%s) completed", job.id, job.queue, job.name, extra=log_context)


class QueueDispatcher:
    """Claims due jobs for one queue and runs at most `concurrency` at once."""

    def __init__(self, ctx: AppContext, queue: QueueName, concurrency: int):
        self.ctx = ctx
        self.queue = queue
        self.concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._in_flight: set[asyncio.Task] = set()

    @property
    def free_slots(self) -> int:
        return self.concurrency - len(self._in_flight)

    async def poll_once(self, now: datetime | None = None) -> int:
        """Claim up to the free slots and start them. Returns jobs started."""
        limit = min(self.free_slots, self.ctx.settings.WORKER_BATCH_SIZE)
        if limit <= 0:
            return 0
        with self.ctx.session() as db:
            job_ids = [job.id for job in job_service.claim_pending_jobs(db, self.queue, limit, now)]

        for job_id in job_ids:
            task = asyncio.create_task(self._run(job_id))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
        return len(job_ids)

    async def _run(self, job_id: UUID) -> None:
        async with self._semaphore:
            await run_job(self.ctx, job_id)

    async def drain(self) -> None:
        """Wait for every started job to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def run_forever(self) -> None:
        logger.info("Dispatcher for %s started (concurrency=%s)", self.queue.value, self.concurrency)
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("Error polling %s queue: %s", self.queue.value, e)
            await asyncio.sleep(self.ctx.settings.WORKER_POLL_INTERVAL_SECONDS)


def fire_schedules(ctx: AppContext, now: datetime | None = None) -> int:
    """One scheduler tick: enqueue every due repeatable job."""
    tz = resolve_timezone(ctx.settings.TIMEZONE)
    with ctx.session() as db:
        fired = schedule_service.fire_due_schedules(db, now=now, tz=tz)
    if fired:
        logger.info("Fired %s scheduled job(s)", len(fired))
    return len(fired)


async def scheduler_loop(ctx: AppContext) -> None:
    while True:
        try:
            fire_schedules(ctx)
        except Exception as e:
            logger.error("Error firing schedules: %s", e)
        await asyncio.sleep(ctx.settings.WORKER_POLL_INTERVAL_SECONDS)


def build_dispatchers(ctx: AppContext) -> list[QueueDispatcher]:
    limits = queue_concurrency(ctx.settings)
    return [QueueDispatcher(ctx, queue, limits[queue]) for queue in enabled_queues(ctx.settings)]


async def worker_loop(ctx: AppContext) -> None:
    """Run every dispatcher plus the scheduler until cancelled."""
    with ctx.session() as db:
        requeued = job_service.requeue_stale_running_jobs(db, STALE_RUNNING_AFTER)
    if requeued:
        logger.warning("Requeued %s job(s) left running by a previous worker", requeued)

    dispatchers = build_dispatchers(ctx)
    logger.info(
        "Worker starting (queues: %s, poll interval: %ss)",
        ", ".join(d.queue.value for d in dispatchers),
        ctx.settings.WORKER_POLL_INTERVAL_SECONDS,
    )
    await asyncio.gather(scheduler_loop(ctx), *(d.run_forever() for d in dispatchers))


def _init_sentry(settings: Settings) -> None:
    if not settings.SENTRY_DSN or settings.is_dev:
        return
    import sentry_sdk
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[SqlalchemyIntegration()],
        send_default_pii=False,
    )
    logger.info("Sentry initialized for error tracking")


async def _serve(settings: Settings) -> None:
    ctx = build_context(settings)
    try:
        await worker_loop(ctx)
    finally:
        await ctx.aclose()


def main() -> None:
    settings = get_settings()
    configure_logging()
    _init_sentry(settings)
    try:
        asyncio.run(_serve(settings))
    except KeyboardInterrupt:
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
