"""Worker runtime: handler registry, job outcomes, per-queue concurrency."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from papwa_sync.db.enums import EventSource, JobName, JobStatus, Provider, QueueName
from papwa_sync.jobs.registry import CUSTOM_BACKOFFS, JOB_HANDLERS, resolve_job_handler
from papwa_sync.services import job_service, record_service, schedule_service
from papwa_sync.worker import (
    PLANNING_QUEUE_CONCURRENCY,
    QueueDispatcher,
    build_dispatchers,
    enabled_queues,
    fire_schedules,
    process_job,
    queue_concurrency,
    run_job,
)
from tests.conftest import NOW


def test_every_job_name_has_a_handler():
    assert set(JOB_HANDLERS) == {name.value for name in JobName}


def test_job_registry_unknown_raises():
    with pytest.raises(ValueError, match="Unknown job name"):
        resolve_job_handler("not_a_job")


def test_callback_workflow_has_custom_backoff():
    assert CUSTOM_BACKOFFS[JobName.CALLBACK_WORKFLOW.value](1) == 1_800_000


def test_planning_queue_runs_one_at_a_time(settings):
    limits = queue_concurrency(settings)
    assert limits[QueueName.PLANNING] == PLANNING_QUEUE_CONCURRENCY == 1
    assert limits[QueueName.SYNC] >= 1


def test_enabled_queues_defaults_to_all(settings, monkeypatch):
    monkeypatch.setattr(settings, "WORKER_QUEUES", "")
    assert enabled_queues(settings) == list(QueueName)

    monkeypatch.setattr(settings, "WORKER_QUEUES", "sync, planning")
    assert enabled_queues(settings) == [QueueName.SYNC, QueueName.PLANNING]


@pytest.mark.asyncio
async def test_process_job_uses_registry(monkeypatch, ctx):
    called = {}

    async def fake_handler(ctx, db, job):
        called["job"] = job

    monkeypatch.setattr("papwa_sync.worker.resolve_job_handler", lambda name: fake_handler)
    job = type("Job", (), {"id": "1", "queue": "sync", "name": "crm_sync", "attempts": 1, "max_attempts": 1})()

    await process_job(ctx, None, job)

    assert called["job"] is job


@pytest.mark.asyncio
async def test_run_job_completes_and_calls_planner(ctx, db, planner):
    job = job_service.enqueue(
        db, QueueName.PLANNING, JobName.REPLAN, {"date": "2025-03-18", "reason": "test"}, now=NOW
    )
    job_service.claim_pending_jobs(db, QueueName.PLANNING, 1, now=NOW)

    await run_job(ctx, job.id)

    db.expire_all()
    assert job_service.get_job(db, job.id).status == JobStatus.COMPLETED.value
    assert planner.calls == [("replan", "2025-03-18", "test")]


@pytest.mark.asyncio
async def test_run_job_failure_is_recorded(ctx, db):
    job = job_service.enqueue(db, QueueName.NOTIFICATION, JobName.PUSH_NOTIFICATION, {"title": "x"}, now=NOW)
    job_service.claim_pending_jobs(db, QueueName.NOTIFICATION, 1, now=NOW)

    await run_job(ctx, job.id)

    db.expire_all()
    job = job_service.get_job(db, job.id)
    assert job.status == JobStatus.FAILED.value
    assert "Missing title or body" in job.last_error


@pytest.mark.asyncio
async def test_push_notification_is_delivered(ctx, db, notifier):
    job = job_service.enqueue(
        db,
        QueueName.NOTIFICATION,
        JobName.PUSH_NOTIFICATION,
        {"title": "Plan ready", "body": "Your day is planned", "data": {"date": "2025-03-18"}},
        now=NOW,
    )
    job_service.claim_pending_jobs(db, QueueName.NOTIFICATION, 1, now=NOW)

    await run_job(ctx, job.id)

    assert notifier.sent == [("Plan ready", "Your day is planned", {"date": "2025-03-18"})]


@pytest.mark.asyncio
async def test_planning_jobs_skip_without_planner(ctx, db):
    ctx.planner = None
    job = job_service.enqueue(db, QueueName.PLANNING, JobName.MORNING_BRIEFING, now=NOW)
    job_service.claim_pending_jobs(db, QueueName.PLANNING, 1, now=NOW)

    await run_job(ctx, job.id)

    db.expire_all()
    assert job_service.get_job(db, job.id).status == JobStatus.COMPLETED.value


class SlowPlanner:
    def __init__(self):
        self.active = 0
        self.max_active = 0
        self.days: list[str] = []

    async def replan(self, date, reason):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.01)
        self.days.append(date)
        self.active -= 1


@pytest.mark.asyncio
async def test_planning_dispatcher_never_overlaps_jobs(ctx, db):
    planner = SlowPlanner()
    ctx.planner = planner
    for day in ("2025-03-18", "2025-03-19", "2025-03-20"):
        job_service.enqueue(db, QueueName.PLANNING, JobName.REPLAN, {"date": day}, now=NOW)
    dispatcher = QueueDispatcher(ctx, QueueName.PLANNING, PLANNING_QUEUE_CONCURRENCY)

    assert await dispatcher.poll_once(now=NOW) == 1
    # The single slot is busy
    assert await dispatcher.poll_once(now=NOW) == 0

    await dispatcher.drain()
    while await dispatcher.poll_once(now=NOW):
        await dispatcher.drain()

    assert planner.max_active == 1
    assert sorted(planner.days) == ["2025-03-18", "2025-03-19", "2025-03-20"]
    db.expire_all()
    statuses = {job.status for job in job_service.list_jobs(db, queue=QueueName.PLANNING)}
    assert statuses == {JobStatus.COMPLETED.value}


@pytest.mark.asyncio
async def test_build_dispatchers_applies_limits(ctx):
    dispatchers = {d.queue: d for d in build_dispatchers(ctx)}
    assert dispatchers[QueueName.PLANNING].concurrency == 1


@pytest.mark.asyncio
async def test_fire_schedules_enqueues_due_jobs(ctx, db):
    schedule_service.register_schedule(
        db, "sync:leads", "*/15 * * * *", QueueName.SYNC, JobName.LEADS_SYNC, now=NOW
    )

    assert fire_schedules(ctx, now=NOW + timedelta(minutes=15)) == 1
    assert fire_schedules(ctx, now=NOW + timedelta(minutes=15)) == 0
    assert len(job_service.list_jobs(db, name=JobName.LEADS_SYNC)) == 1


@pytest.mark.asyncio
async def test_sync_job_for_disconnected_provider_completes(ctx, db, calendar_connector):
    job = job_service.enqueue(db, QueueName.SYNC, JobName.CALENDAR_SYNC, now=NOW)
    job_service.claim_pending_jobs(db, QueueName.SYNC, 1, now=NOW)

    await run_job(ctx, job.id)

    db.expire_all()
    assert job_service.get_job(db, job.id).status == JobStatus.COMPLETED.value
    assert calendar_connector.fetch_calls == []


@pytest.mark.asyncio
async def test_overlapping_calendar_syncs_push_each_event_once(
    ctx, db, calendar_connector, connect_provider, monkeypatch
):
    connect_provider(Provider.CALENDAR, expires_in=None)
    start = datetime.now(timezone.utc) + timedelta(days=1)
    event = record_service.create_event(
        db,
        title="Deep work",
        start_time=start,
        end_time=start + timedelta(hours=1),
        source=EventSource.AI_PLANNED.value,
    )
    db.commit()
    event_id = event.id

    create_event = calendar_connector.create_event

    async def slow_create_event(access_token, calendar_id, draft):
        await asyncio.sleep(0.05)
        return await create_event(access_token, calendar_id, draft)

    monkeypatch.setattr(calendar_connector, "create_event", slow_create_event)
    # A cron tick and a webhook tick for the same provider, both due
    job_service.enqueue(db, QueueName.SYNC, JobName.CALENDAR_SYNC, idempotency_key="schedule:calendar")
    job_service.enqueue(db, QueueName.SYNC, JobName.CALENDAR_SYNC, idempotency_key="webhook:calendar")
    dispatcher = QueueDispatcher(ctx, QueueName.SYNC, 3)

    assert await dispatcher.poll_once() == 2
    await dispatcher.drain()

    assert len(calendar_connector.created) == 1
    db.expire_all()
    assert record_service.get_event(db, event_id).google_event_id == "remote-1"
    statuses = {job.status for job in job_service.list_jobs(db, name=JobName.CALENDAR_SYNC)}
    assert statuses == {JobStatus.COMPLETED.value}


@pytest.mark.asyncio
async def test_sync_locks_are_per_provider(ctx):
    assert ctx.sync_lock(Provider.CALENDAR) is ctx.sync_lock(Provider.CALENDAR)
    assert ctx.sync_lock(Provider.CALENDAR) is not ctx.sync_lock(Provider.LEADS)
