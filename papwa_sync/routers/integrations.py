"""
Integration management endpoints.

Protected by X-Internal-Secret header.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from papwa_sync.context import AppContext
from papwa_sync.core.deps import get_context, get_db, verify_internal_secret
from papwa_sync.db.enums import Provider
from papwa_sync.schemas.integration_config import LeadsConfig
from papwa_sync.schemas.integrations import (
    ConnectLeadsRequest,
    IntegrationStatusRead,
    JobQueuedResponse,
)
from papwa_sync.services import integration_service, webhook_service
from papwa_sync.services.token_service import TokenManager

router = APIRouter(
    prefix="/integrations",
    tags=["integrations"],
    dependencies=[Depends(verify_internal_secret)],
)
logger = logging.getLogger(__name__)


def _provider(provider: str) -> Provider:
    try:
        return Provider(provider)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")


@router.get("", response_model=list[IntegrationStatusRead])
def list_integrations(db: Session = Depends(get_db)):
    """Connection status of every provider."""
    return [integration_service.get_status(db, provider) for provider in Provider]


@router.get("/{provider}", response_model=IntegrationStatusRead)
def get_integration(provider: str, db: Session = Depends(get_db)):
    return integration_service.get_status(db, _provider(provider))


@router.post("/leads/connect", response_model=IntegrationStatusRead)
async def connect_leads(
    body: ConnectLeadsRequest,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Verify and store a lead tracker API token."""
    tokens = TokenManager(db, ctx.connectors)
    if not await tokens.connect_api_token(body.api_token):
        raise HTTPException(status_code=400, detail="API token rejected by provider")
    if body.user_id:
        state = integration_service.get_state(db, Provider.LEADS)
        config = integration_service.get_config(state, LeadsConfig)
        config.user_id = body.user_id
        integration_service.save_config(db, state, config)
    return integration_service.get_status(db, Provider.LEADS)


@router.post("/{provider}/disconnect", response_model=IntegrationStatusRead)
async def disconnect_integration(
    provider: str,
    db: Session = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Revoke (best-effort) and clear the provider's credentials."""
    target = _provider(provider)
    await TokenManager(db, ctx.connectors).disconnect(target)
    return integration_service.get_status(db, target)


@router.post("/{provider}/sync", response_model=JobQueuedResponse, status_code=202)
def trigger_sync(provider: str, db: Session = Depends(get_db)):
    """Queue an immediate sync tick."""
    target = _provider(provider)
    if not integration_service.is_active(db, target):
        raise HTTPException(status_code=409, detail=f"{target.value} is not connected")
    job = webhook_service.enqueue_sync(db, target, reason="manual")
    return JobQueuedResponse(
        job_id=job.id, queue=job.queue, name=job.name, run_at=job.run_at.isoformat()
    )
