"""Shared request helpers for provider connectors."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from papwa_sync.core.errors import RateLimitError, classify_status, error_for_status

logger = logging.getLogger(__name__)

# Google reports quota exhaustion as 403 with one of these reasons
RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"})


async def send_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    provider: str,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json_body: dict[str, Any] | None = None,
    form: dict[str, str] | None = None,
) -> tuple[int, Any]:
    """Perform a request and return (status_code, parsed JSON or None).

    Network failures are reported as status 0 so callers classify them as
    transient alongside 5xx responses.
    """
    try:
        response = await client.request(
            method,
            url,
            headers=headers,
            params=params,
            json=json_body,
            data=form,
        )
    except httpx.HTTPError as exc:
        logger.warning(
            "%s request failed: %s %s (%s)", provider, method, url, type(exc).__name__
        )
        return 0, None

    if response.status_code in (204, 304) or not response.content:
        return response.status_code, None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    return response.status_code, payload


def _is_rate_limited(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    error = payload.get("error")
    errors = error.get("errors") if isinstance(error, dict) else payload.get("errors")
    if not isinstance(errors, list):
        return False
    return any(
        isinstance(item, dict) and item.get("reason") in RATE_LIMIT_REASONS for item in errors
    )


def raise_for_status(
    status: int,
    *,
    provider: str,
    action: str,
    payload: Any = None,
) -> None:
    """Raise the typed error for a non-success status. 2xx and 304 pass."""
    if classify_status(status) is None:
        return
    detail = ""
    if isinstance(payload, dict):
        error = payload.get("error") or payload.get("message") or payload.get("code")
        if isinstance(error, dict):
            error = error.get("message")
        if error:
            detail = f": {str(error)[:200]}"
    message = f"{provider} {action} failed (status={status}){detail}"
    if status == 403 and _is_rate_limited(payload):
        raise RateLimitError(message, provider=provider, status_code=status)
    raise error_for_status(status, message, provider=provider)


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp from a provider into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
