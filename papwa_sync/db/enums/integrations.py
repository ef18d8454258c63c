"""Integration-related enums."""

from enum import Enum


class Provider(str, Enum):
    """External systems the engine keeps in sync."""

    CALENDAR = "calendar"  # Google Calendar
    CRM = "crm"  # Zoho Bigin
    LEADS = "leads"  # SalesRabbit


class SyncStatus(str, Enum):
    """Outcome of one provider sync tick."""

    OK = "ok"
    NOT_MODIFIED = "not_modified"  # provider reported no changes
    ABORTED = "aborted"  # list call failed; next tick retries
    DEACTIVATED = "deactivated"  # auth failure flipped is_active off
    SKIPPED = "skipped"  # integration not connected/active
