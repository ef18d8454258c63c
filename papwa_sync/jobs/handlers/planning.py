"""Planning queue handlers. The planner itself lives outside this package."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from papwa_sync.context import AppContext
from papwa_sync.db.models import Job
from papwa_sync.services.sync_common import resolve_timezone

logger = logging.getLogger(__name__)


def _planner(ctx: AppContext, job: Job):
    if ctx.planner is None:
        logger.warning("No planner configured; skipping %s job %s", job.name, job.id)
    return ctx.planner


async def process_replan(ctx: AppContext, db: Session, job: Job) -> None:
    planner = _planner(ctx, job)
    if planner is None:
        return
    payload = job.payload or {}
    day = payload.get("date")
    if not day:
        tz = resolve_timezone(ctx.settings.TIMEZONE)
        day = datetime.now(timezone.utc).astimezone(tz).date().isoformat()
    await planner.replan(day, payload.get("reason") or "requested")


async def process_morning_briefing(ctx: AppContext, db: Session, job: Job) -> None:
    planner = _planner(ctx, job)
    if planner:
        await planner.morning_briefing()


async def process_evening_review(ctx: AppContext, db: Session, job: Job) -> None:
    planner = _planner(ctx, job)
    if planner:
        await planner.evening_review()


async def process_weekly_plan(ctx: AppContext, db: Session, job: Job) -> None:
    planner = _planner(ctx, job)
    if planner:
        await planner.weekly_plan()
