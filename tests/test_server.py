"""Tests for the MCP tool surface, exercised through an in-process fastmcp Client."""

from __future__ import annotations

import json

import pytest
from fastmcp import Client

from morgen_mcp.config import AdapterConfig
from morgen_mcp.context import AdapterContext
from morgen_mcp.errors import (
    AggregateError,
    ConfigurationError,
    NetworkError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from morgen_mcp.server import (
    INVALID_API_KEY_MESSAGE,
    RATE_LIMIT_MESSAGE,
    build_server,
    describe_error,
)
from tests.conftest import API_KEY, FIXED_NOW

pytestmark = pytest.mark.unit


@pytest.fixture
def context(http_client) -> AdapterContext:
    config = AdapterConfig(api_key=API_KEY, timezone="UTC")
    return AdapterContext(config, http_client=http_client, clock=lambda: FIXED_NOW)


@pytest.fixture
def server(context):
    return build_server(context)


# ---------------------------------------------------------------------------
# describe_error
# ---------------------------------------------------------------------------


class TestDescribeError:
    def test_invalid_api_key(self):
        error = UpstreamError(status_code=401, message="Unauthorized")
        assert describe_error(error) == INVALID_API_KEY_MESSAGE

    def test_rate_limited(self):
        error = UpstreamError(status_code=429, message="Too Many Requests")
        assert describe_error(error) == RATE_LIMIT_MESSAGE

    @pytest.mark.parametrize(
        "error",
        [
            ValidationError("query must be a non-empty string"),
            ConfigurationError("No calendar accounts configured."),
            NotFoundError("Calendar with ID x not found"),
        ],
    )
    def test_caller_facing_errors_keep_their_message(self, error):
        assert describe_error(error) == str(error)

    @pytest.mark.parametrize(
        "error",
        [
            UpstreamError(status_code=500, message="boom"),
            NetworkError("Network error: refused"),
            AggregateError([]),
            RuntimeError("unexpected"),
        ],
    )
    def test_everything_else_is_generic(self, error):
        assert describe_error(error) == f"Tool execution failed: {error}"


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


async def test_registers_every_tool(server):
    async with Client(server) as client:
        tools = await client.list_tools()

    assert {tool.name for tool in tools} == {
        "list_calendars",
        "list_accounts",
        "get_today_events",
        "get_week_events",
        "get_events",
        "search_events",
        "create_event",
    }


async def test_list_calendars(server):
    async with Client(server) as client:
        result = await client.call_tool("list_calendars", {})

    assert result.data.startswith("Found 3 calendar(s):")
    assert "📁 Work" in result.data
    assert "🆔 ID: cal-3" in result.data


async def test_list_calendars_empty(server, fake_morgen):
    fake_morgen.calendars = []
    async with Client(server) as client:
        result = await client.call_tool("list_calendars", {})

    assert "No calendars found" in result.data
    assert "https://platform.morgen.so" in result.data


async def test_list_accounts(server):
    async with Client(server) as client:
        result = await client.call_tool("list_accounts", {})

    assert result.data.startswith("Connected 2 account(s):")
    assert "🔗 Provider: Office 365" in result.data


async def test_invalid_api_key_message(server, fake_morgen):
    fake_morgen.status_override = 401
    async with Client(server) as client:
        result = await client.call_tool("list_accounts", {}, raise_on_error=False)

    assert result.is_error
    assert result.content[0].text == INVALID_API_KEY_MESSAGE


async def test_today(server):
    async with Client(server) as client:
        result = await client.call_tool("get_today_events", {})

    assert result.data.startswith(
        "📅 Today's Schedule (Wednesday, January 10, 2024) - 3 event(s):"
    )
    assert "1. 📅 Team Standup" in result.data
    assert "Busy (via Morgen)" not in result.data


async def test_today_degrades_on_failure(server, fake_morgen):
    fake_morgen.status_override = 500
    async with Client(server) as client:
        result = await client.call_tool("get_today_events", {})

    assert not result.is_error
    assert result.data == "📅 No events scheduled for today (Wednesday, January 10, 2024)"


async def test_week(server):
    async with Client(server) as client:
        result = await client.call_tool("get_week_events", {})

    assert result.data.startswith("📅 This Week's Schedule - 3 event(s):")
    assert "📆 Wednesday (1 event):" in result.data
    assert "📆 Monday" not in result.data


async def test_get_events(server):
    async with Client(server) as client:
        result = await client.call_tool(
            "get_events",
            {
                "calendar_ids": "cal-1",
                "start_date": "2024-01-10T00:00:00Z",
                "end_date": "2024-01-11T00:00:00Z",
            },
        )

    assert result.data.startswith("📅 Found 1 event(s):")
    assert "Team Standup" in result.data


async def test_get_events_without_dates(server, fake_morgen):
    async with Client(server) as client:
        result = await client.call_tool(
            "get_events", {"calendar_ids": "cal-2", "account_id": "acc-1"}
        )

    assert result.data.startswith("📅 Found 1 event(s):")
    assert "Dentist" in result.data
    (request,) = fake_morgen.event_queries()
    assert request.url.params["accountId"] == "acc-1"
    assert request.url.params["calendarIds"] == "cal-2"
    assert "start" not in request.url.params
    assert "end" not in request.url.params


async def test_get_events_without_dates_rejects_list_ids(server, fake_morgen):
    async with Client(server) as client:
        result = await client.call_tool(
            "get_events", {"calendar_ids": ["cal-1"]}, raise_on_error=False
        )

    assert result.is_error
    assert 'comma-separated IDs like "cal-1,cal-2"' in result.content[0].text
    assert fake_morgen.requests == []


async def test_get_events_rejects_list_ids(server, fake_morgen):
    async with Client(server) as client:
        result = await client.call_tool(
            "get_events",
            {
                "calendar_ids": ["cal-1", "cal-2"],
                "start_date": "2024-01-10",
                "end_date": "2024-01-11",
            },
            raise_on_error=False,
        )

    assert result.is_error
    assert 'comma-separated IDs like "cal-1,cal-2"' in result.content[0].text
    assert fake_morgen.requests == []


async def test_get_events_generic_failure(server, fake_morgen):
    fake_morgen.failing_accounts = {"acc-1": 500, "acc-2": 500}
    async with Client(server) as client:
        result = await client.call_tool(
            "get_events",
            {"calendar_ids": "cal-1,cal-3", "start_date": "2024-01-10", "end_date": "2024-01-11"},
            raise_on_error=False,
        )

    assert result.is_error
    assert result.content[0].text.startswith("Tool execution failed: Failed to fetch events")


async def test_search(server):
    async with Client(server) as client:
        found = await client.call_tool("search_events", {"query": "stand"})
        missing = await client.call_tool("search_events", {"query": "xyz"})

    assert found.data.startswith("🔍 Found 1 event(s) matching 'stand':")
    assert missing.data == "🔍 No events found matching 'xyz'"


async def test_search_rejects_out_of_range_max_results(server, fake_morgen):
    async with Client(server) as client:
        result = await client.call_tool(
            "search_events", {"query": "stand", "max_results": 0}, raise_on_error=False
        )

    assert result.is_error
    assert fake_morgen.requests == []


async def test_search_without_accounts_explains(server, fake_morgen):
    fake_morgen.accounts = []
    async with Client(server) as client:
        result = await client.call_tool("search_events", {"query": "stand"}, raise_on_error=False)

    assert result.is_error
    assert "No calendar accounts configured" in result.content[0].text


async def test_create_event_defaults_to_one_hour(server, fake_morgen):
    async with Client(server) as client:
        result = await client.call_tool(
            "create_event",
            {
                "account_id": "acc-1",
                "calendar_id": "cal-1",
                "title": "Focus time",
                "start_time": "2024-01-10T15:00:00Z",
                "location": "Desk",
            },
        )

    assert result.data.startswith("✅ Event created successfully!")
    assert "📅 Focus time" in result.data
    assert "⏰ End: 2024-01-10 16:00" in result.data
    assert fake_morgen.created[0]["duration"] == "60m"
    assert fake_morgen.created[0]["location"] == "Desk"


async def test_create_event_unknown_calendar(server, fake_morgen):
    async with Client(server) as client:
        result = await client.call_tool(
            "create_event",
            {
                "account_id": "acc-1",
                "calendar_id": "cal-404",
                "title": "Focus time",
                "start_time": "2024-01-10T15:00:00Z",
            },
            raise_on_error=False,
        )

    assert result.is_error
    assert result.content[0].text == "Calendar with ID cal-404 not found"
    assert fake_morgen.created == []


async def test_create_event_bad_start_time(server):
    async with Client(server) as client:
        result = await client.call_tool(
            "create_event",
            {
                "account_id": "acc-1",
                "calendar_id": "cal-1",
                "title": "Focus time",
                "start_time": "tomorrow",
            },
            raise_on_error=False,
        )

    assert result.is_error
    assert "start_time" in result.content[0].text


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


async def test_calendar_and_account_resources(server):
    async with Client(server) as client:
        calendars = await client.read_resource("morgen://calendars")
        accounts = await client.read_resource("morgen://accounts")

    assert [item["id"] for item in json.loads(calendars[0].text)] == ["cal-1", "cal-2", "cal-3"]
    assert json.loads(accounts[0].text)[0]["integrationId"] == "google"


async def test_cache_stats_resource(server):
    async with Client(server) as client:
        await client.call_tool("list_calendars", {})
        stats = await client.read_resource("morgen://cache/stats")

    assert json.loads(stats[0].text) == {"size": 1, "valid": 1, "expired": 0, "max_size": 100}
