"""Plain-text rendering of calendars, accounts and events for tool responses."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, tzinfo

from morgen_mcp.models import Account, Calendar, Event

DAY_RULE = "─" * 50


def format_datetime(value: datetime | None, zone: tzinfo | None = None) -> str:
    if value is None:
        return "N/A"
    if zone is not None and value.tzinfo is not None:
        value = value.astimezone(zone)
    return value.strftime("%Y-%m-%d %H:%M")


def format_event(event: Event, zone: tzinfo | None = None) -> str:
    lines = [f"📅 {event.title or 'Untitled Event'}"]
    lines.append(f"⏰ Start: {format_datetime(event.start, zone)}")
    if event.end is not None:
        lines.append(f"⏰ End: {format_datetime(event.end, zone)}")
    elif event.duration:
        lines.append(f"⏳ Duration: {event.duration}")
    if event.location:
        lines.append(f"📍 Location: {event.location}")
    if event.description:
        lines.append(f"📝 Description: {event.description}")
    return "\n".join(lines)


def format_event_list(events: Sequence[Event], zone: tzinfo | None = None) -> str:
    return "\n\n".join(
        f"{index}. {format_event(event, zone)}" for index, event in enumerate(events, start=1)
    )


def format_calendar(calendar: Calendar) -> str:
    lines = [f"📁 {calendar.name or 'Unnamed Calendar'}", f"🆔 ID: {calendar.id}"]
    if calendar.account_id:
        lines.append(f"👤 Account ID: {calendar.account_id}")
    if calendar.color:
        lines.append(f"🎨 Color: {calendar.color}")
    if calendar.time_zone:
        lines.append(f"🌍 Time Zone: {calendar.time_zone}")
    return "\n".join(lines)


def format_account(account: Account) -> str:
    lines = [f"👤 {account.email or 'Unknown Email'}", f"🆔 ID: {account.id}"]
    if account.provider_name:
        lines.append(f"🔗 Provider: {account.provider_name}")
    return "\n".join(lines)


def format_week(week: Mapping[str, Sequence[Event]], zone: tzinfo | None = None) -> str:
    """Render a weekday → events mapping, skipping days without events."""
    output: list[str] = []
    for day, events in week.items():
        if not events:
            continue
        suffix = "" if len(events) == 1 else "s"
        output.append(f"\n📆 {day} ({len(events)} event{suffix}):")
        output.append(DAY_RULE)
        output.append("\n\n".join(format_event(event, zone) for event in events))
    return "\n".join(output)
