"""Request/response models for the integration and webhook endpoints."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field


class IntegrationStatusRead(BaseModel):
    provider: str
    connected: bool
    last_sync_at: str | None = None
    last_error: str | None = None


class ConnectLeadsRequest(BaseModel):
    api_token: str = Field(min_length=1)
    user_id: str | None = None


class JobQueuedResponse(BaseModel):
    job_id: UUID
    queue: str
    name: str
    run_at: str


class WebhookAck(BaseModel):
    accepted: bool
    job_id: UUID | None = None
    reason: str | None = None
