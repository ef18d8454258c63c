"""Payload of the callback workflow job (saga progress lives here)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LeadSnapshot(BaseModel):
    """The lead as it looked when the callback rule matched."""

    model_config = ConfigDict(extra="ignore")

    id: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    notes: str | None = None
    custom_fields: dict[str, str] = Field(default_factory=dict)

    @property
    def contact_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def location(self) -> str:
        return ", ".join(part for part in (self.address, self.city, self.state) if part)

    @property
    def full_address(self) -> str:
        return ", ".join(
            part for part in (self.address, self.city, self.state, self.zip) if part
        )


class CallbackWorkflowPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: int = 1
    lead: LeadSnapshot
    proposal_prep_minutes: int = 90
    # Written after the first attempt creates the CRM deal
    crm_deal_id: str | None = None
