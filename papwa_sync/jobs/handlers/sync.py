"""Provider sync job handlers."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from sqlalchemy.orm import Session

from papwa_sync.context import AppContext
from papwa_sync.db.enums import Provider
from papwa_sync.db.models import Job
from papwa_sync.services import calendar_sync_service, crm_sync_service, lead_sync_service
from papwa_sync.services.sync_common import SyncOutcome, resolve_timezone
from papwa_sync.services.token_service import TokenManager

logger = logging.getLogger(__name__)


async def _sync_calendar(ctx: AppContext, db: Session, tokens: TokenManager) -> SyncOutcome:
    return await calendar_sync_service.sync_calendar(
        db,
        tokens,
        ctx.connectors.calendar,
        calendar_name=ctx.settings.GOOGLE_CALENDAR_NAME,
        tz=resolve_timezone(ctx.settings.TIMEZONE),
    )


async def _sync_crm(ctx: AppContext, db: Session, tokens: TokenManager) -> SyncOutcome:
    return await crm_sync_service.sync_crm(db, tokens, ctx.connectors.crm)


async def _sync_leads(ctx: AppContext, db: Session, tokens: TokenManager) -> SyncOutcome:
    return await lead_sync_service.sync_leads(
        db, tokens, ctx.connectors.leads, tz=resolve_timezone(ctx.settings.TIMEZONE)
    )


SYNC_RUNNERS: dict[Provider, Callable[[AppContext, Session, TokenManager], Awaitable[SyncOutcome]]] = {
    Provider.CALENDAR: _sync_calendar,
    Provider.CRM: _sync_crm,
    Provider.LEADS: _sync_leads,
}


async def run_sync(ctx: AppContext, db: Session, provider: Provider) -> SyncOutcome:
    """Run one sync tick for a provider (shared by jobs, API and CLI).

    Ticks for the same provider are serialized: a webhook tick that lands
    while the cron tick is mid-push waits and then sees the pushed ids.
    """
    lock = ctx.sync_lock(provider)
    if lock.locked():
        logger.info("Sync for %s already running, waiting", provider.value)
    async with lock:
        tokens = TokenManager(db, ctx.connectors)
        return await SYNC_RUNNERS[provider](ctx, db, tokens)


async def process_calendar_sync(ctx: AppContext, db: Session, job: Job) -> None:
    outcome = await run_sync(ctx, db, Provider.CALENDAR)
    logger.info("Calendar sync job %s finished: %s", job.id, outcome.status.value)


async def process_crm_sync(ctx: AppContext, db: Session, job: Job) -> None:
    outcome = await run_sync(ctx, db, Provider.CRM)
    logger.info("CRM sync job %s finished: %s", job.id, outcome.status.value)


async def process_leads_sync(ctx: AppContext, db: Session, job: Job) -> None:
    outcome = await run_sync(ctx, db, Provider.LEADS)
    logger.info(
        "Leads sync job %s finished: %s (appointments=%s, callbacks=%s)",
        job.id,
        outcome.status.value,
        outcome.new_appointments,
        outcome.callbacks_enqueued,
    )
