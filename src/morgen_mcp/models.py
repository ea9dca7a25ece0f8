"""Pydantic models for the Morgen calendar API payloads.

The upstream service speaks camelCase JSON; fields are declared snake_case
with aliases so both spellings validate. Unknown upstream fields are kept.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# Placeholder events that never reach callers.
EXCLUDED_EVENT_TITLES = frozenset({"Busy (via Morgen)", "Untitled Event"})

PROVIDER_NAMES = {
    "google": "Google Calendar",
    "o365": "Office 365",
    "apple": "Apple Calendar",
    "exchange": "Microsoft Exchange",
}


class _MorgenModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Calendar(_MorgenModel):
    """One calendar belonging to a connected account."""

    id: str
    name: str | None = None
    account_id: str | None = Field(default=None, alias="accountId")
    color: str | None = None
    time_zone: str | None = Field(default=None, alias="timeZone")


class Account(_MorgenModel):
    """One connected provider credential (Google, Office 365, ...)."""

    id: str
    integration_id: str | None = Field(default=None, alias="integrationId")
    email: str | None = None

    @property
    def provider_name(self) -> str | None:
        if self.integration_id is None:
            return None
        return PROVIDER_NAMES.get(self.integration_id, self.integration_id)


class Event(_MorgenModel):
    """Canonical event shape returned by every read path."""

    id: str | None = None
    title: str | None = None
    description: str | None = None
    location: str | None = None
    start: datetime
    end: datetime | None = None
    duration: str | None = None
    calendar_id: str | None = Field(default=None, alias="calendarId")
    account_id: str | None = Field(default=None, alias="accountId")
    time_zone: str | None = Field(default=None, alias="timeZone")

    @property
    def is_placeholder(self) -> bool:
        return self.title in EXCLUDED_EVENT_TITLES


def drop_placeholder_events(events: list[Event]) -> list[Event]:
    """Remove sentinel placeholder events ("Busy (via Morgen)", "Untitled Event")."""
    return [event for event in events if not event.is_placeholder]
