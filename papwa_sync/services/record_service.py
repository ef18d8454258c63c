"""Local record store: tasks and calendar events.

The sync engine, the callback workflow and the planner all write through
these functions. Mirrored rows are addressed by (external_id,
external_source) for tasks and by google_event_id / (source, external_id)
for events; callers look a row up before creating it.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from papwa_sync.db.enums import EventSource
from papwa_sync.db.models import CalendarEvent, Task


# =============================================================================
# Tasks
# =============================================================================


def get_task(db: Session, task_id: uuid.UUID) -> Task | None:
    return db.query(Task).filter(Task.id == task_id).first()


def get_task_by_external(
    db: Session, external_id: str, external_source: str
) -> Task | None:
    return (
        db.query(Task)
        .filter(
            Task.external_id == external_id,
            Task.external_source == external_source,
        )
        .first()
    )


def list_tasks_by_contact(
    db: Session, external_source: str, contact_name: str
) -> list[Task]:
    return (
        db.query(Task)
        .filter(
            Task.external_source == external_source,
            Task.contact_name == contact_name,
        )
        .all()
    )


def create_task(db: Session, **fields: Any) -> Task:
    task = Task(**fields)
    db.add(task)
    db.flush()
    return task


def apply_changes(record: Task | CalendarEvent, changes: dict[str, Any]) -> bool:
    """Set only the attributes whose value differs. Returns True if any changed."""
    changed = False
    for attr, value in changes.items():
        if getattr(record, attr) != value:
            setattr(record, attr, value)
            changed = True
    return changed


# =============================================================================
# Calendar events
# =============================================================================


def get_event(db: Session, event_id: uuid.UUID) -> CalendarEvent | None:
    return db.query(CalendarEvent).filter(CalendarEvent.id == event_id).first()


def get_event_by_google_id(db: Session, google_event_id: str) -> CalendarEvent | None:
    return (
        db.query(CalendarEvent)
        .filter(CalendarEvent.google_event_id == google_event_id)
        .first()
    )


def get_event_by_external(
    db: Session, source: EventSource, external_id: str
) -> CalendarEvent | None:
    return (
        db.query(CalendarEvent)
        .filter(
            CalendarEvent.source == source.value,
            CalendarEvent.external_id == external_id,
        )
        .first()
    )


def list_events(
    db: Session,
    start: datetime,
    end: datetime,
    *,
    source: EventSource | None = None,
) -> list[CalendarEvent]:
    """Events starting in [start, end), ordered by start time."""
    query = db.query(CalendarEvent).filter(
        CalendarEvent.start_time >= start,
        CalendarEvent.start_time < end,
    )
    if source:
        query = query.filter(CalendarEvent.source == source.value)
    return query.order_by(CalendarEvent.start_time).all()


def list_unpushed_planned_events(
    db: Session, start: datetime, end: datetime
) -> list[CalendarEvent]:
    """Planned events in range that have not been pushed to the calendar yet."""
    return (
        db.query(CalendarEvent)
        .filter(
            CalendarEvent.source == EventSource.AI_PLANNED.value,
            CalendarEvent.google_event_id.is_(None),
            CalendarEvent.start_time >= start,
            CalendarEvent.start_time < end,
        )
        .order_by(CalendarEvent.start_time)
        .all()
    )


def list_mirrored_events(
    db: Session, start: datetime, end: datetime
) -> list[CalendarEvent]:
    """Calendar-provider mirrors in range (candidates for drift cleanup)."""
    return (
        db.query(CalendarEvent)
        .filter(
            CalendarEvent.source == EventSource.CALENDAR.value,
            CalendarEvent.google_event_id.is_not(None),
            CalendarEvent.start_time >= start,
            CalendarEvent.start_time < end,
        )
        .all()
    )


def find_event_by_meta(
    db: Session, source: EventSource, key: str, value: str
) -> CalendarEvent | None:
    """First event of `source` whose metadata[key] equals value."""
    for event in db.query(CalendarEvent).filter(CalendarEvent.source == source.value):
        if (event.meta or {}).get(key) == value:
            return event
    return None


def create_event(db: Session, **fields: Any) -> CalendarEvent:
    event = CalendarEvent(**fields)
    db.add(event)
    db.flush()
    return event


def delete_event(db: Session, event: CalendarEvent) -> None:
    db.delete(event)
    db.flush()
