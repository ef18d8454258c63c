"""Typed views over IntegrationState.config, one per provider."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _VersionedConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: int = 1


class CalendarRoutingConfig(_VersionedConfig):
    """Which calendars the calendar sync reads from and writes to."""

    # Calendar owned by this app that planned events are pushed into.
    # None until the named calendar has been found or created.
    push_calendar_id: str | None = None
    pull_calendar_id: str = "primary"
    # Extra calendar searched by the callback workflow
    work_calendar_id: str | None = None
    # Watch channel id for push notifications (validated on webhook receipt)
    watch_channel_id: str | None = None


class CrmConfig(_VersionedConfig):
    accounts_url: str | None = None
    api_domain: str | None = None


class CallbackTriggerConfig(BaseModel):
    """Rule that turns a lead update into a callback workflow."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    status_name_match: str = "Callback"
    custom_field_name: str = ""
    custom_field_value: str = ""
    proposal_prep_minutes: int = Field(default=90, ge=1)


class LeadsConfig(_VersionedConfig):
    # Only import leads owned by this SalesRabbit user
    user_id: str | None = None
    callback_trigger: CallbackTriggerConfig = Field(default_factory=CallbackTriggerConfig)


def load_config(model: type[_VersionedConfig], raw: dict | None):
    return model.model_validate(raw or {})


def dump_config(config: _VersionedConfig) -> dict:
    return config.model_dump(mode="json")
