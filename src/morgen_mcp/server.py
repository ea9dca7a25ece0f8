"""FastMCP tool surface for the Morgen calendar adapter.

Tools return human-readable text. Failures are raised as ``ToolError`` with
a message the assistant can relay: upstream 401/429 get dedicated wording,
caller mistakes keep their validation message, everything else is reported
as a generic tool failure.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Annotated

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from morgen_mcp.client import MORGEN_PLATFORM_URL, parse_timestamp
from morgen_mcp.context import AdapterContext
from morgen_mcp.core.telemetry import tool_span
from morgen_mcp.errors import (
    ConfigurationError,
    MorgenError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from morgen_mcp.formatters import (
    format_account,
    format_calendar,
    format_event,
    format_event_list,
    format_week,
)
from morgen_mcp.queries import CALENDAR_IDS_FORMAT_HINT

logger = logging.getLogger(__name__)

SERVER_NAME = "morgen-calendar"
INSTRUCTIONS = (
    "Morgen calendar tools: list connected accounts and calendars, read today's or "
    "this week's schedule, query a date range, search events, and create events. "
    'Pass calendar_ids as "all" or a comma-separated string such as "cal-1,cal-2".'
)
DEFAULT_EVENT_LENGTH = timedelta(hours=1)

INVALID_API_KEY_MESSAGE = "Invalid API key. Please check your Morgen API key configuration."
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


def describe_error(exc: Exception) -> str:
    """Turn an adapter failure into the text shown to the assistant."""
    if isinstance(exc, UpstreamError):
        if exc.status_code == 401:
            return INVALID_API_KEY_MESSAGE
        if exc.status_code == 429:
            return RATE_LIMIT_MESSAGE
    if isinstance(exc, ValidationError | ConfigurationError | NotFoundError):
        return str(exc)
    return f"Tool execution failed: {exc}"


def build_server(context: AdapterContext) -> FastMCP:
    """Create the FastMCP server with every tool bound to *context*."""
    mcp = FastMCP(name=SERVER_NAME, instructions=INSTRUCTIONS)
    queries = context.queries
    zone = context.config.zone

    def _fail(tool_name: str, exc: Exception) -> ToolError:
        if isinstance(exc, ValidationError):
            logger.info("%s rejected input: %s", tool_name, exc)
        elif isinstance(exc, MorgenError):
            logger.warning("%s failed: %s", tool_name, exc)
        else:
            logger.error("%s failed unexpectedly", tool_name, exc_info=True)
        return ToolError(describe_error(exc))

    @mcp.tool()
    async def list_calendars() -> str:
        """View all connected calendars."""
        with tool_span("list_calendars"):
            try:
                calendars = await queries.list_calendars()
            except Exception as exc:
                raise _fail("list_calendars", exc) from exc
        if not calendars:
            return f"No calendars found. Please connect your calendars at {MORGEN_PLATFORM_URL}"
        body = "\n\n".join(format_calendar(calendar) for calendar in calendars)
        return f"Found {len(calendars)} calendar(s):\n\n{body}"

    @mcp.tool()
    async def list_accounts() -> str:
        """View connected calendar providers."""
        with tool_span("list_accounts"):
            try:
                accounts = await queries.list_accounts()
            except Exception as exc:
                raise _fail("list_accounts", exc) from exc
        if not accounts:
            return (
                "No accounts connected. Please connect your calendar accounts at "
                f"{MORGEN_PLATFORM_URL}"
            )
        body = "\n\n".join(format_account(account) for account in accounts)
        return f"Connected {len(accounts)} account(s):\n\n{body}"

    @mcp.tool()
    async def get_today_events() -> str:
        """Get today's events across all calendars."""
        with tool_span("get_today_events"):
            events = await queries.get_today_events()
        today = queries.now().strftime("%A, %B %d, %Y")
        if not events:
            return f"📅 No events scheduled for today ({today})"
        return (
            f"📅 Today's Schedule ({today}) - {len(events)} event(s):\n\n"
            f"{format_event_list(events, zone)}"
        )

    @mcp.tool()
    async def get_week_events() -> str:
        """Get this week's events organized by day."""
        with tool_span("get_week_events"):
            week = await queries.get_week_events()
        total = sum(len(events) for events in week.values())
        if not total:
            return "📅 No events scheduled for this week"
        return f"📅 This Week's Schedule - {total} event(s):{format_week(week, zone)}"

    @mcp.tool()
    async def get_events(
        calendar_ids: Annotated[
            str | list[str],
            Field(description='Comma-separated calendar IDs, or "all" with account_id'),
        ],
        start_date: Annotated[str | None, Field(description="Start date (ISO format)")] = None,
        end_date: Annotated[str | None, Field(description="End date (ISO format)")] = None,
        account_id: Annotated[
            str | None, Field(description="Specific account ID (optional)")
        ] = None,
    ) -> str:
        """Get events from specific calendars/dates."""
        with tool_span("get_events"):
            try:
                if start_date and end_date:
                    events = await queries.get_events(
                        start_date=start_date,
                        end_date=end_date,
                        calendar_ids=calendar_ids,
                        account_id=account_id,
                    )
                else:
                    # Unbounded lookups go straight upstream, uncached.
                    if not isinstance(calendar_ids, str):
                        raise ValidationError(CALENDAR_IDS_FORMAT_HINT, field="calendar_ids")
                    events = await context.client.list_events(
                        account_id=account_id,
                        calendar_ids=calendar_ids,
                        start=start_date or None,
                        end=end_date or None,
                    )
            except Exception as exc:
                raise _fail("get_events", exc) from exc
        if not events:
            return "📅 No events found for the specified criteria"
        return f"📅 Found {len(events)} event(s):\n\n{format_event_list(events, zone)}"

    @mcp.tool()
    async def search_events(
        query: Annotated[str, Field(description="Search query")],
        start_date: Annotated[
            str | None, Field(description="Search start date (optional)")
        ] = None,
        end_date: Annotated[str | None, Field(description="Search end date (optional)")] = None,
        max_results: Annotated[
            int | None, Field(ge=1, le=100, description="Maximum results (default: 20)")
        ] = None,
    ) -> str:
        """Search events by title/description/location."""
        with tool_span("search_events"):
            try:
                events = await queries.search_events(
                    query,
                    start_date=start_date,
                    end_date=end_date,
                    max_results=max_results,
                )
            except Exception as exc:
                raise _fail("search_events", exc) from exc
        if not events:
            return f"🔍 No events found matching '{query}'"
        return (
            f"🔍 Found {len(events)} event(s) matching '{query}':\n\n"
            f"{format_event_list(events, zone)}"
        )

    @mcp.tool()
    async def create_event(
        account_id: Annotated[str, Field(description="Account ID for the calendar")],
        calendar_id: Annotated[str, Field(description="Target calendar ID")],
        title: Annotated[str, Field(description="Event title")],
        start_time: Annotated[str, Field(description="Start time (ISO format)")],
        end_time: Annotated[
            str | None, Field(description="End time (optional, defaults to +1 hour)")
        ] = None,
        description: Annotated[
            str | None, Field(description="Event description (optional)")
        ] = None,
        location: Annotated[str | None, Field(description="Event location (optional)")] = None,
        time_zone: Annotated[
            str | None, Field(description="Time zone (optional, defaults to UTC)")
        ] = None,
    ) -> str:
        """Create new calendar events."""
        with tool_span("create_event"):
            try:
                start = parse_timestamp(start_time, field="start_time")
                end = (
                    parse_timestamp(end_time, field="end_time")
                    if end_time
                    else start + DEFAULT_EVENT_LENGTH
                )
                event = await queries.create_event(
                    title=title,
                    start_date=start,
                    end_date=end,
                    calendar_id=calendar_id,
                    account_id=account_id,
                    description=description,
                    location=location,
                    timezone=time_zone,
                )
            except Exception as exc:
                raise _fail("create_event", exc) from exc
        return f"✅ Event created successfully!\n\n{format_event(event, zone)}"

    @mcp.resource("morgen://calendars", mime_type="application/json")
    async def calendars_resource() -> str:
        """Connected calendars as JSON."""
        calendars = await queries.list_calendars()
        return json.dumps([calendar.to_payload() for calendar in calendars])

    @mcp.resource("morgen://accounts", mime_type="application/json")
    async def accounts_resource() -> str:
        """Connected accounts as JSON."""
        accounts = await queries.list_accounts()
        return json.dumps([account.to_payload() for account in accounts])

    @mcp.resource("morgen://cache/stats", mime_type="application/json")
    def cache_stats_resource() -> str:
        """Response cache occupancy."""
        return json.dumps(context.client.cache_stats())

    return mcp
