"""Shared fixtures: an in-memory Morgen upstream served through httpx.MockTransport."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from morgen_mcp.cache import TTLCache
from morgen_mcp.client import MorgenClient

API_KEY = "test-api-key"

# Wednesday
FIXED_NOW = datetime(2024, 1, 10, 12, 0, tzinfo=UTC)


def make_event(
    event_id: str,
    title: str,
    calendar_id: str,
    account_id: str,
    start: str = "2024-01-10T09:00:00Z",
    end: str | None = "2024-01-10T10:00:00Z",
    **extra: Any,
) -> dict[str, Any]:
    event: dict[str, Any] = {
        "id": event_id,
        "title": title,
        "start": start,
        "calendarId": calendar_id,
        "accountId": account_id,
        **extra,
    }
    if end is not None:
        event["end"] = end
    return event


class FakeMorgen:
    """Minimal stand-in for the Morgen v3 REST API.

    Records every request. ``/events/list`` filters by ``calendarIds`` only;
    date bounds are recorded but not applied. Accounts listed in
    ``failing_accounts`` answer their events query with that status code.
    """

    def __init__(self) -> None:
        self.accounts: list[dict[str, Any]] = [
            {"id": "acc-1", "integrationId": "google", "email": "alice@example.com"},
            {"id": "acc-2", "integrationId": "o365", "email": "bob@example.com"},
        ]
        self.calendars: list[dict[str, Any]] = [
            {"id": "cal-1", "accountId": "acc-1", "name": "Work", "color": "#ff0000"},
            {"id": "cal-2", "accountId": "acc-1", "name": "Personal"},
            {"id": "cal-3", "accountId": "acc-2", "name": "Team", "timeZone": "UTC"},
        ]
        self.events: dict[str, list[dict[str, Any]]] = {
            "acc-1": [
                make_event("evt-1", "Team Standup", "cal-1", "acc-1"),
                make_event("evt-busy", "Busy (via Morgen)", "cal-1", "acc-1"),
                make_event(
                    "evt-2",
                    "Dentist",
                    "cal-2",
                    "acc-1",
                    start="2024-01-11T14:00:00Z",
                    end="2024-01-11T15:00:00Z",
                    location="Main Street Clinic",
                ),
            ],
            "acc-2": [
                make_event(
                    "evt-3",
                    "Planning",
                    "cal-3",
                    "acc-2",
                    start="2024-01-12T13:00:00Z",
                    end=None,
                    duration="PT1H",
                    description="Quarterly roadmap review",
                ),
            ],
        }
        self.failing_accounts: dict[str, int] = {}
        self.status_override: int | None = None
        self.requests: list[httpx.Request] = []
        self.created: list[dict[str, Any]] = []

    # -- inspection helpers -------------------------------------------------

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def event_queries(self) -> list[httpx.QueryParams]:
        return [
            request.url.params
            for request in self.requests
            if request.url.path.endswith("/events/list")
        ]

    # -- transport ----------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_override is not None:
            return httpx.Response(self.status_override, json={"message": "upstream says no"})

        path = request.url.path
        if path.endswith("/calendars/list"):
            return httpx.Response(200, json={"data": {"calendars": self.calendars}})
        if path.endswith("/integrations/accounts/list"):
            return httpx.Response(200, json={"data": {"accounts": self.accounts}})
        if path.endswith("/events/list"):
            return self._list_events(request)
        if path.endswith("/events/create"):
            body = json.loads(request.content)
            self.created.append(body)
            return httpx.Response(200, json={"data": {"event": {"id": "evt-new"}}})
        return httpx.Response(404, json={"message": f"No route for {path}"})

    def _list_events(self, request: httpx.Request) -> httpx.Response:
        account_id = request.url.params.get("accountId")
        if account_id in self.failing_accounts:
            return httpx.Response(
                self.failing_accounts[account_id],
                json={"message": f"account {account_id} unavailable"},
            )

        raw_ids = request.url.params.get("calendarIds", "")
        wanted = {part for part in raw_ids.split(",") if part}
        sources = [self.events.get(account_id, [])] if account_id else self.events.values()
        events = [
            event
            for bucket in sources
            for event in bucket
            if not wanted or event["calendarId"] in wanted
        ]
        return httpx.Response(200, json={"data": {"events": events}})


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_morgen() -> FakeMorgen:
    return FakeMorgen()


@pytest.fixture
async def http_client(fake_morgen: FakeMorgen):
    transport = httpx.MockTransport(fake_morgen.handler)
    async with httpx.AsyncClient(transport=transport) as client:
        yield client


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(clock=clock)


@pytest.fixture
def morgen_client(http_client: httpx.AsyncClient, cache: TTLCache) -> MorgenClient:
    return MorgenClient(API_KEY, cache=cache, http_client=http_client)
