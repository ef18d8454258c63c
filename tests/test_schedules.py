"""Repeatable job registration and firing."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from papwa_sync.db.enums import JobName, QueueName
from papwa_sync.db.models import Job
from papwa_sync.jobs.schedules import SCHEDULES, ScheduleKey, setup_schedules
from papwa_sync.services import schedule_service
from tests.conftest import NOW


def test_setup_schedules_is_idempotent(db):
    setup_schedules(db, now=NOW)
    setup_schedules(db, now=NOW)

    schedules = schedule_service.list_schedules(db)
    assert len(schedules) == len(SCHEDULES) == 6
    assert {s.key for s in schedules} == {key.value for key in ScheduleKey}


def test_schedule_crons(db):
    setup_schedules(db, now=NOW)

    crons = {s.key: s.cron for s in schedule_service.list_schedules(db)}
    assert crons[ScheduleKey.CALENDAR_SYNC.value] == "*/30 * * * *"
    assert crons[ScheduleKey.CRM_SYNC.value] == "*/15 * * * *"
    assert crons[ScheduleKey.MORNING_BRIEFING.value] == "0 6 * * *"
    assert crons[ScheduleKey.WEEKLY_PLAN.value] == "0 18 * * 0"


def test_register_replaces_existing_key(db):
    schedule_service.register_schedule(db, "k", "*/5 * * * *", QueueName.SYNC, JobName.CRM_SYNC, now=NOW)
    schedule_service.register_schedule(db, "k", "*/10 * * * *", QueueName.SYNC, JobName.CRM_SYNC, now=NOW)

    schedules = schedule_service.list_schedules(db)
    assert len(schedules) == 1
    assert schedules[0].cron == "*/10 * * * *"


def test_invalid_cron_is_rejected(db):
    with pytest.raises(ValueError):
        schedule_service.register_schedule(db, "k", "not a cron", QueueName.SYNC, JobName.CRM_SYNC)


def test_next_run_uses_local_timezone():
    chicago = ZoneInfo("America/Chicago")
    # 09:00Z on 2025-03-18 is 04:00 in Chicago (CDT, UTC-5)
    assert schedule_service.next_run("0 6 * * *", now=NOW, tz=chicago) == datetime(
        2025, 3, 18, 11, 0, tzinfo=timezone.utc
    )


def test_fire_due_schedules_enqueues_once_per_tick(db):
    schedule_service.register_schedule(
        db, "sync:crm", "*/15 * * * *", QueueName.SYNC, JobName.CRM_SYNC, now=NOW
    )
    tick = NOW + timedelta(minutes=15)

    fired = schedule_service.fire_due_schedules(db, now=tick)

    assert len(fired) == 1
    assert fired[0].name == JobName.CRM_SYNC.value
    assert fired[0].schedule_key == "sync:crm"
    schedule = schedule_service.get_schedule(db, "sync:crm")
    assert schedule.next_run_at == NOW + timedelta(minutes=30)
    assert schedule.last_run_at == tick
    # Same instant again: nothing is due
    assert schedule_service.fire_due_schedules(db, now=tick) == []


def test_missed_ticks_collapse_into_one_job(db):
    schedule_service.register_schedule(
        db, "sync:crm", "*/15 * * * *", QueueName.SYNC, JobName.CRM_SYNC, now=NOW
    )

    fired = schedule_service.fire_due_schedules(db, now=NOW + timedelta(hours=3))

    assert len(fired) == 1
    assert db.query(Job).count() == 1


def test_nothing_fires_before_due(db):
    setup_schedules(db, now=NOW)
    assert schedule_service.fire_due_schedules(db, now=NOW) == []
