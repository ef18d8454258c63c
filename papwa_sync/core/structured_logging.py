"""Structured logging helpers (token-safe)."""

import logging
from typing import Any


def build_log_context(
    *,
    provider: str | None = None,
    queue: str | None = None,
    job_id: str | None = None,
    job_name: str | None = None,
    record_id: str | None = None,
    attempt: int | None = None,
) -> dict[str, Any]:
    """Return a log context dict with only the fields that are set.

    Never pass token material here; the context ends up in log sinks.
    """
    context: dict[str, Any] = {}
    if provider:
        context["provider"] = provider
    if queue:
        context["queue"] = queue
    if job_id:
        context["job_id"] = job_id
    if job_name:
        context["job_name"] = job_name
    if record_id:
        context["record_id"] = record_id
    if attempt is not None:
        context["attempt"] = attempt
    return context


def configure_logging(level: int | str = "INFO") -> None:
    """Configure root logging for worker and CLI processes."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
