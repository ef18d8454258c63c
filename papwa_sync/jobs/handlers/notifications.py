"""Push notification job handler."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from papwa_sync.context import AppContext
from papwa_sync.db.models import Job

logger = logging.getLogger(__name__)


async def process_push_notification(ctx: AppContext, db: Session, job: Job) -> None:
    payload = job.payload or {}
    title = payload.get("title")
    body = payload.get("body") or payload.get("message")
    if not title or not body:
        raise ValueError("Missing title or body in notification job payload")

    if ctx.notifier is None:
        logger.warning("No notifier configured; dropping notification job %s", job.id)
        return
    await ctx.notifier.send(title, body, payload.get("data"))
