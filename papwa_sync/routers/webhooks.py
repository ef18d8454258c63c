"""Webhooks router - provider push notifications."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from papwa_sync.core.deps import get_db
from papwa_sync.db.enums import Provider
from papwa_sync.schemas.integrations import WebhookAck
from papwa_sync.services import webhook_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/{provider}", response_model=WebhookAck)
async def receive_provider_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Receive a provider change notification.

    Enqueues an immediate sync job and returns right away; the sync itself
    runs on the worker.
    """
    try:
        target = Provider(provider)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")

    try:
        result = webhook_service.handle_provider_webhook(db, target, request.headers)
    except webhook_service.WebhookRejected as e:
        logger.warning("Rejected %s webhook: %s", provider, e)
        raise HTTPException(status_code=403, detail="Unknown channel")

    return WebhookAck(
        accepted=result.accepted,
        job_id=result.job.id if result.job else None,
        reason=result.reason,
    )
