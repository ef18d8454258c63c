"""Provider connectors, one per external system."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from papwa_sync.connectors.base import (
    CalendarConnector,
    CrmConnector,
    LeadsConnector,
    TokenConnector,
)
from papwa_sync.connectors.bigin import BiginConnector
from papwa_sync.connectors.google_calendar import GoogleCalendarConnector
from papwa_sync.connectors.salesrabbit import SalesRabbitConnector
from papwa_sync.core.config import Settings
from papwa_sync.db.enums import Provider


@dataclass
class ConnectorRegistry:
    calendar: CalendarConnector
    crm: CrmConnector
    leads: LeadsConnector

    def for_provider(self, provider: Provider) -> TokenConnector:
        connectors: dict[Provider, TokenConnector] = {
            Provider.CALENDAR: self.calendar,
            Provider.CRM: self.crm,
            Provider.LEADS: self.leads,
        }
        return connectors[provider]


def build_connectors(client: httpx.AsyncClient, settings: Settings) -> ConnectorRegistry:
    return ConnectorRegistry(
        calendar=GoogleCalendarConnector(client, settings),
        crm=BiginConnector(client, settings),
        leads=SalesRabbitConnector(client, settings),
    )


__all__ = ["ConnectorRegistry", "build_connectors"]
