"""Query façade consumed by the tool layer.

Each public operation caches its own result under a dedicated key and TTL.
``get_today_events`` and ``get_week_events`` are best-effort summaries and
degrade to empty results; ``get_events`` and ``search_events`` propagate
failures so the caller can explain them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, tzinfo
from typing import Any

from morgen_mcp.cache import TTLCache
from morgen_mcp.client import MorgenClient, format_timestamp, is_all_calendars, parse_timestamp
from morgen_mcp.errors import NotFoundError, ValidationError
from morgen_mcp.models import Account, Calendar, Event, drop_placeholder_events

logger = logging.getLogger(__name__)

TODAY_CACHE_KEY = "events:today"
WEEK_CACHE_KEY = "events:week"
RANGE_CACHE_NAME = "events:range"
SEARCH_CACHE_PREFIX = "search"

TODAY_CACHE_TTL_SECONDS = 120
WEEK_CACHE_TTL_SECONDS = 120
RANGE_CACHE_TTL_SECONDS = 60
SEARCH_CACHE_TTL_SECONDS = 30

SEARCH_DEFAULT_WINDOW = timedelta(days=30)
SEARCH_DEFAULT_MAX_RESULTS = 20

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

CALENDAR_IDS_FORMAT_HINT = (
    'calendar_ids must be a string. Use "all" for all calendars or '
    'comma-separated IDs like "cal-1,cal-2"'
)

WeekEvents = dict[str, list[Event]]


def empty_week() -> WeekEvents:
    return {name: [] for name in WEEKDAY_NAMES}


def _copy_week(week: WeekEvents) -> WeekEvents:
    return {name: list(week.get(name, [])) for name in WEEKDAY_NAMES}


def _split_calendar_ids(calendar_ids: str) -> list[str]:
    return [part.strip() for part in calendar_ids.split(",") if part.strip()]


def _matches(event: Event, needle: str) -> bool:
    for value in (event.title, event.description, event.location):
        if value and needle in value.casefold():
            return True
    return False


class CalendarQueries:
    """Cached, validated calendar queries on top of a :class:`MorgenClient`.

    Parameters
    ----------
    client:
        Upstream client; its cache is shared by every query here.
    timezone:
        Zone defining "today" and "this week". Defaults to the host zone.
    clock:
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        client: MorgenClient,
        *,
        timezone: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._timezone = timezone
        self._clock = clock

    @property
    def cache(self) -> TTLCache:
        return self._client.cache

    def now(self) -> datetime:
        current = self._clock() if self._clock is not None else datetime.now(self._timezone)
        if current.tzinfo is None:
            current = current.astimezone()
        if self._timezone is not None:
            current = current.astimezone(self._timezone)
        return current

    def _local_midnight(self) -> datetime:
        return self.now().replace(hour=0, minute=0, second=0, microsecond=0)

    def _weekday_of(self, event: Event, zone: tzinfo | None) -> int:
        start = event.start
        if start.tzinfo is not None and zone is not None:
            start = start.astimezone(zone)
        return start.weekday()

    # ------------------------------------------------------------------
    # Pass-through metadata
    # ------------------------------------------------------------------

    async def list_calendars(self) -> list[Calendar]:
        return await self._client.list_calendars()

    async def list_accounts(self) -> list[Account]:
        return await self._client.list_accounts()

    # ------------------------------------------------------------------
    # Summaries (best-effort)
    # ------------------------------------------------------------------

    async def get_today_events(self) -> list[Event]:
        cached = self.cache.get(TODAY_CACHE_KEY)
        if cached is not None:
            return list(cached)

        try:
            today = self._local_midnight()
            tomorrow = today + timedelta(days=1)
            events = await self._client.get_all_events_in_range(today, tomorrow)
        except Exception:
            logger.warning("get_today_events failed; returning no events", exc_info=True)
            return []

        self.cache.set(TODAY_CACHE_KEY, events, TODAY_CACHE_TTL_SECONDS)
        return list(events)

    async def get_week_events(self) -> WeekEvents:
        cached = self.cache.get(WEEK_CACHE_KEY)
        if cached is not None:
            return _copy_week(cached)

        try:
            today = self._local_midnight()
            monday = today - timedelta(days=today.weekday())
            next_monday = monday + timedelta(days=7)
            events = await self._client.get_all_events_in_range(monday, next_monday)
        except Exception:
            logger.warning("get_week_events failed; returning an empty week", exc_info=True)
            return empty_week()

        week = empty_week()
        for event in events:
            week[WEEKDAY_NAMES[self._weekday_of(event, today.tzinfo)]].append(event)

        self.cache.set(WEEK_CACHE_KEY, week, WEEK_CACHE_TTL_SECONDS)
        return _copy_week(week)

    # ------------------------------------------------------------------
    # Range queries
    # ------------------------------------------------------------------

    async def get_events(
        self,
        *,
        start_date: datetime | str | None = None,
        end_date: datetime | str | None = None,
        calendar_ids: Any = None,
        account_id: str | None = None,
    ) -> list[Event]:
        """Events from specific calendars in ``[start_date, end_date)``.

        ``calendar_ids`` is either ``"all"`` (requires ``account_id``) or a
        comma-separated id string. Lists are rejected rather than coerced.
        ``"all"`` covers only the calendars of ``account_id``, never every account.
        """
        if calendar_ids is not None and not isinstance(calendar_ids, str):
            raise ValidationError(CALENDAR_IDS_FORMAT_HINT, field="calendar_ids")

        missing = [
            name
            for name, value in (
                ("start_date", start_date),
                ("end_date", end_date),
                ("calendar_ids", calendar_ids),
            )
            if value is None or (isinstance(value, str) and not value.strip())
        ]
        if missing:
            raise ValidationError(
                f"start_date, end_date, and calendar_ids are required (missing: "
                f"{', '.join(missing)})",
                field=missing[0],
            )

        account_id = account_id.strip() if account_id else None
        if not account_id and is_all_calendars(calendar_ids):
            raise ValidationError(
                'account_id is required when calendar_ids is "all"', field="account_id"
            )

        start = format_timestamp(parse_timestamp(start_date, field="start_date"))
        end = format_timestamp(parse_timestamp(end_date, field="end_date"))

        ids = _split_calendar_ids(calendar_ids)
        if not ids:
            raise ValidationError(CALENDAR_IDS_FORMAT_HINT, field="calendar_ids")

        cache_key = TTLCache.build_key(
            RANGE_CACHE_NAME,
            {
                "account_id": account_id,
                "start_date": start,
                "end_date": end,
                "calendar_ids": ",".join(ids),
            },
        )
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        if is_all_calendars(calendar_ids):
            calendars = await self._client.list_calendars()
            account_calendar_ids = [cal.id for cal in calendars if cal.account_id == account_id]
            if not account_calendar_ids:
                raise NotFoundError(f"No calendars found for account {account_id}")
            events = await self._client.list_events(
                account_id=account_id,
                calendar_ids=",".join(account_calendar_ids),
                start=start,
                end=end,
            )
        elif account_id:
            events = await self._client.list_events(
                account_id=account_id,
                calendar_ids=",".join(ids),
                start=start,
                end=end,
            )
        else:
            known = {cal.id for cal in await self._client.list_calendars()}
            unknown = [calendar_id for calendar_id in ids if calendar_id not in known]
            if unknown:
                raise NotFoundError(f"Unknown calendar ID(s): {', '.join(unknown)}")
            events = await self._client.get_all_events_in_range(
                start, end, calendar_ids=set(ids)
            )

        self.cache.set(cache_key, events, RANGE_CACHE_TTL_SECONDS)
        return list(events)

    async def search_events(
        self,
        query: str,
        *,
        start_date: datetime | str | None = None,
        end_date: datetime | str | None = None,
        max_results: int | None = None,
    ) -> list[Event]:
        """Case-insensitive substring search over title, description and location."""
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("query must be a non-empty string", field="query")
        if max_results is not None and max_results < 1:
            raise ValidationError("max_results must be at least 1", field="max_results")

        options = {
            "start_date": format_timestamp(start_date) if start_date is not None else None,
            "end_date": format_timestamp(end_date) if end_date is not None else None,
            "max_results": max_results,
        }
        query = query.strip()
        cache_key = f"{SEARCH_CACHE_PREFIX}:{query}:{TTLCache.hash_options(options)}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        now = self.now()
        start = (
            parse_timestamp(start_date, field="start_date")
            if start_date is not None
            else now - SEARCH_DEFAULT_WINDOW
        )
        end = (
            parse_timestamp(end_date, field="end_date")
            if end_date is not None
            else now + SEARCH_DEFAULT_WINDOW
        )

        events = await self._client.get_all_events_in_range(start, end)
        needle = query.casefold()
        matches = [event for event in drop_placeholder_events(events) if _matches(event, needle)]
        results = matches[: max_results or SEARCH_DEFAULT_MAX_RESULTS]

        self.cache.set(cache_key, results, SEARCH_CACHE_TTL_SECONDS)
        return list(results)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_event(self, **fields: Any) -> Event:
        return await self._client.create_event(**fields)
