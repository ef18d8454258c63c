"""Typed views over Task/CalendarEvent metadata written by the engine."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class LeadTaskMetadata(BaseModel):
    """Metadata on tasks mirrored from leads (and callback proposal tasks)."""

    model_config = ConfigDict(extra="allow")

    lead_id: str | None = None
    lead_status: str | None = None
    lead_email: str | None = None
    # Set once the callback workflow has been enqueued for this lead
    callback_processed: bool = False
    callback_proposal: bool = False


class EventMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    category: str | None = None
    calendar_type: str | None = None
    lead_id: str | None = None
    google_calendar: bool = False
    # Marks the prep block created by the callback workflow for a lead
    callback_prep_lead_id: str | None = None


def merge_metadata(existing: dict | None, update: BaseModel) -> dict:
    """Return a new metadata dict with the set fields of `update` applied."""
    merged = dict(existing or {})
    merged.update(update.model_dump(mode="json", exclude_unset=True))
    return merged
