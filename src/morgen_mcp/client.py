"""Async HTTP client for the Morgen calendar API.

``MorgenClient`` owns the process-wide :class:`~morgen_mcp.cache.TTLCache`
for its credential. Calendar and account metadata is memoized here; event
queries are cached one level up by :class:`~morgen_mcp.queries.CalendarQueries`.
"""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
from pydantic import ValidationError as PydanticValidationError

from morgen_mcp import __version__
from morgen_mcp.aggregator import EventAggregator
from morgen_mcp.cache import TTLCache
from morgen_mcp.errors import (
    ConfigurationError,
    NetworkError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from morgen_mcp.models import Account, Calendar, Event, drop_placeholder_events

logger = logging.getLogger(__name__)

MORGEN_API_BASE_URL = "https://api.morgen.so/v3"
MORGEN_PLATFORM_URL = "https://platform.morgen.so"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_EVENT_TIMEZONE = "UTC"

CALENDARS_CACHE_KEY = "calendars"
ACCOUNTS_CACHE_KEY = "accounts"
METADATA_CACHE_TTL_SECONDS = 3600
EVENT_CACHE_PREFIXES = ("events:", "search:")

ALL_CALENDARS = "all"
CREATE_EVENT_REQUIRED_FIELDS = ("title", "start_date", "end_date", "calendar_id")


def is_all_calendars(calendar_ids: Any) -> bool:
    return isinstance(calendar_ids, str) and calendar_ids.strip().lower() == ALL_CALENDARS


def format_timestamp(value: datetime | str) -> str:
    """Render a query bound the way the events endpoint expects it (UTC, ``Z``)."""
    if isinstance(value, str):
        return value
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: datetime | str, *, field: str) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into a datetime."""
    if isinstance(value, datetime):
        return value
    normalized = value.strip()
    if normalized.endswith(("Z", "z")):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        return datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValidationError(
            f"{field} must be an ISO-8601 date or date-time, got {value!r}",
            field=field,
        ) from exc


def _duration_minutes(start: datetime, end: datetime) -> int:
    minutes = (end - start).total_seconds() / 60
    return math.floor(minutes + 0.5)


def _local_start(start: datetime, timezone: str) -> str:
    """Express *start* as a wall-clock time in *timezone* (no offset)."""
    if start.tzinfo is not None:
        start = start.astimezone(ZoneInfo(timezone))
    return start.replace(tzinfo=None).isoformat(timespec="seconds")


def _error_details(response: httpx.Response) -> tuple[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("message", "error"):
            message = payload.get(key)
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200], payload
    raw_text = response.text.strip()
    if raw_text and payload is None:
        return " ".join(raw_text.split())[:200], None
    return response.reason_phrase or "Request failed without an error payload", payload


def _parse_items(payload: dict[str, Any], key: str, model: type[Any]) -> list[Any]:
    data = payload.get("data")
    items = data.get(key) if isinstance(data, dict) else None
    if not isinstance(items, list):
        return []

    parsed = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            parsed.append(model.model_validate(item))
        except PydanticValidationError as exc:
            logger.debug("Skipping malformed %s item: %s", key, exc)
    return parsed


class MorgenClient:
    """Authenticated client for the Morgen REST API.

    Parameters
    ----------
    api_key:
        Static API key sent as ``Authorization: ApiKey <key>`` on every request.
    base_url:
        API root, without a trailing slash.
    timeout:
        Per-request timeout in seconds for the owned HTTP client.
    cache:
        Cache instance; a default ``TTLCache`` is created when omitted.
    http_client:
        Optional pre-built ``httpx.AsyncClient`` (tests inject a mock transport).
        A client passed in is not closed by :meth:`aclose`.
    fanout_concurrency:
        Maximum number of per-account event queries in flight during fan-out.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = MORGEN_API_BASE_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        cache: TTLCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        fanout_concurrency: int = 1,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("api_key must be a non-empty string")
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"ApiKey {api_key.strip()}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": f"morgen-mcp/{__version__}",
        }
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.cache = cache if cache is not None else TTLCache()
        self.aggregator = EventAggregator(self, concurrency=fanout_concurrency)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{self._base_url}{normalized_path}"
        logger.debug("Morgen request %s %s params=%s", method, normalized_path, params)
        try:
            response = await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"Network error: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            message, details = _error_details(response)
            raise UpstreamError(
                status_code=response.status_code,
                message=message,
                details=details,
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                status_code=response.status_code,
                message="Morgen API returned invalid JSON for a successful response",
            ) from exc

        if not isinstance(payload, dict):
            raise UpstreamError(
                status_code=response.status_code,
                message="Morgen API returned an unexpected JSON payload shape",
            )
        return payload

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def list_calendars(self) -> list[Calendar]:
        cached = self.cache.get(CALENDARS_CACHE_KEY)
        if cached is not None:
            return list(cached)

        payload = await self._request_json("GET", "/calendars/list")
        calendars = _parse_items(payload, "calendars", Calendar)
        self.cache.set(CALENDARS_CACHE_KEY, calendars, METADATA_CACHE_TTL_SECONDS)
        return list(calendars)

    async def list_accounts(self) -> list[Account]:
        cached = self.cache.get(ACCOUNTS_CACHE_KEY)
        if cached is not None:
            return list(cached)

        payload = await self._request_json("GET", "/integrations/accounts/list")
        accounts = _parse_items(payload, "accounts", Account)
        self.cache.set(ACCOUNTS_CACHE_KEY, accounts, METADATA_CACHE_TTL_SECONDS)
        return list(accounts)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def list_events(
        self,
        *,
        account_id: str | None = None,
        calendar_ids: str | None = None,
        start: datetime | str | None = None,
        end: datetime | str | None = None,
    ) -> list[Event]:
        """Query ``/events/list`` once, with placeholder events removed.

        ``calendar_ids="all"`` has no upstream equivalent: with both bounds it
        fans out across every account, otherwise it expands to every known
        calendar id.
        """
        if is_all_calendars(calendar_ids):
            if start is not None and end is not None:
                return await self.get_all_events_in_range(start, end)

            calendars = await self.list_calendars()
            if not calendars:
                raise ConfigurationError(
                    "No calendars available. Please add calendars to your connected accounts."
                )
            calendar_ids = ",".join(calendar.id for calendar in calendars)

        params: dict[str, str] = {}
        if account_id:
            params["accountId"] = account_id
        if calendar_ids:
            params["calendarIds"] = calendar_ids
        if start is not None:
            params["start"] = format_timestamp(start)
        if end is not None:
            params["end"] = format_timestamp(end)

        payload = await self._request_json("GET", "/events/list", params=params)
        events = _parse_items(payload, "events", Event)
        return drop_placeholder_events(events)

    async def get_all_events_in_range(
        self,
        start: datetime | str,
        end: datetime | str,
        *,
        calendar_ids: set[str] | None = None,
    ) -> list[Event]:
        return await self.aggregator.events_in_range(start, end, calendar_ids=calendar_ids)

    async def create_event(
        self,
        *,
        title: str | None = None,
        start_date: datetime | str | None = None,
        end_date: datetime | str | None = None,
        calendar_id: str | None = None,
        description: str | None = None,
        location: str | None = None,
        timezone: str | None = None,
        account_id: str | None = None,
    ) -> Event:
        """Create an event and invalidate every cached event/search result."""
        provided = {
            "title": title,
            "start_date": start_date,
            "end_date": end_date,
            "calendar_id": calendar_id,
        }
        for field in CREATE_EVENT_REQUIRED_FIELDS:
            value = provided[field]
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"Missing required field: {field}", field=field)

        start_at = parse_timestamp(start_date, field="start_date")
        end_at = parse_timestamp(end_date, field="end_date")
        if (start_at.tzinfo is None) != (end_at.tzinfo is None):
            raise ValidationError(
                "start_date and end_date must both carry a UTC offset or both omit it",
                field="end_date",
            )
        if end_at < start_at:
            raise ValidationError("end_date must not be before start_date", field="end_date")

        event_timezone = (timezone or DEFAULT_EVENT_TIMEZONE).strip() or DEFAULT_EVENT_TIMEZONE
        try:
            local_start = _local_start(start_at, event_timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValidationError(
                f"Unknown timezone: {event_timezone!r}", field="timezone"
            ) from exc

        calendars = await self.list_calendars()
        calendar = next((cal for cal in calendars if cal.id == calendar_id), None)
        if calendar is None:
            raise NotFoundError(f"Calendar with ID {calendar_id} not found")
        if account_id and calendar.account_id and account_id != calendar.account_id:
            raise ValidationError(
                f"Calendar {calendar_id} belongs to account {calendar.account_id}, "
                f"not {account_id}",
                field="account_id",
            )

        body: dict[str, Any] = {
            "title": title,
            "description": description or "",
            "start": local_start,
            "duration": f"{_duration_minutes(start_at, end_at)}m",
            "accountId": calendar.account_id,
            "calendarId": calendar_id,
            "timeZone": event_timezone,
        }
        if location:
            body["location"] = location

        logger.info(
            "Creating event on calendar %s (account=%s, duration=%s)",
            calendar_id,
            calendar.account_id,
            body["duration"],
        )
        payload = await self._request_json("POST", "/events/create", json_body=body)

        removed = self.invalidate_event_caches()
        logger.debug("Invalidated %d cached event/search entries after create", removed)

        echo: dict[str, Any] = {
            **body,
            "start": start_at.isoformat(),
            "end": end_at.isoformat(),
        }
        data = payload.get("data")
        reported = data.get("event", data) if isinstance(data, dict) else None
        if isinstance(reported, dict):
            echo.update({key: value for key, value in reported.items() if value is not None})
        return Event.model_validate(echo)

    # ------------------------------------------------------------------
    # Cache management & lifecycle
    # ------------------------------------------------------------------

    def invalidate_event_caches(self) -> int:
        return self.cache.delete_prefixed(*EVENT_CACHE_PREFIXES)

    def cache_stats(self) -> dict[str, int]:
        return self.cache.stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def start(self) -> None:
        self.cache.start()

    async def aclose(self) -> None:
        await self.cache.destroy()
        if self._owns_http_client:
            await self._http_client.aclose()
