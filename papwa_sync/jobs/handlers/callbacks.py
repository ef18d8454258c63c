"""Callback workflow job handler."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from papwa_sync.context import AppContext
from papwa_sync.db.models import Job
from papwa_sync.services import callback_saga_service
from papwa_sync.services.token_service import TokenManager

logger = logging.getLogger(__name__)


async def process_callback_workflow(ctx: AppContext, db: Session, job: Job) -> None:
    """Run one attempt. SagaRetryableError propagates to the worker for backoff."""
    tokens = TokenManager(db, ctx.connectors)
    result = await callback_saga_service.run_callback_workflow(db, tokens, ctx.connectors, job)
    logger.info("Callback workflow job %s ended %s (task=%s)", job.id, result.state.value, result.task_id)
