"""Cross-account event fan-out.

The events endpoint only answers for one account at a time, so a question
like "everything between Monday and Friday" becomes one query per connected
account. A failing account is recorded and skipped; the fan-out only fails
when every attempted account failed and nothing came back.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from morgen_mcp.errors import AccountFailure, AggregateError, ConfigurationError, MorgenError
from morgen_mcp.models import Account, Calendar, Event

logger = logging.getLogger(__name__)

NO_ACCOUNTS_MESSAGE = (
    "No calendar accounts configured. "
    "Please connect your calendars at https://platform.morgen.so"
)
NO_CALENDARS_MESSAGE = "No calendars available. Please add calendars to your connected accounts."


class EventSource(Protocol):
    async def list_accounts(self) -> list[Account]: ...

    async def list_calendars(self) -> list[Calendar]: ...

    async def list_events(
        self,
        *,
        account_id: str | None = None,
        calendar_ids: str | None = None,
        start: datetime | str | None = None,
        end: datetime | str | None = None,
    ) -> list[Event]: ...


def group_calendars_by_account(
    calendars: Iterable[Calendar],
    *,
    only: set[str] | None = None,
) -> dict[str, list[str]]:
    """Map account id to its calendar ids, in first-seen order."""
    grouped: dict[str, list[str]] = {}
    for calendar in calendars:
        if only is not None and calendar.id not in only:
            continue
        if not calendar.account_id:
            logger.debug("Skipping calendar %s without an owning account", calendar.id)
            continue
        grouped.setdefault(calendar.account_id, []).append(calendar.id)
    return grouped


class EventAggregator:
    """Answer date-range queries across every connected account.

    ``concurrency`` bounds how many per-account queries run at once; the
    default of 1 queries accounts one after another. Results are merged in
    account discovery order either way.
    """

    def __init__(self, source: EventSource, *, concurrency: int = 1) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._source = source
        self.concurrency = concurrency

    async def events_in_range(
        self,
        start: datetime | str,
        end: datetime | str,
        *,
        calendar_ids: set[str] | None = None,
    ) -> list[Event]:
        accounts = await self._source.list_accounts()
        if not accounts:
            raise ConfigurationError(NO_ACCOUNTS_MESSAGE)

        calendars = await self._source.list_calendars()
        if not calendars:
            raise ConfigurationError(NO_CALENDARS_MESSAGE)

        by_account = group_calendars_by_account(calendars, only=calendar_ids)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _query(account_id: str, ids: list[str]) -> list[Event] | AccountFailure:
            async with semaphore:
                try:
                    return await self._source.list_events(
                        account_id=account_id,
                        calendar_ids=",".join(ids),
                        start=start,
                        end=end,
                    )
                except MorgenError as exc:
                    logger.warning(
                        "Error fetching events for account %s: %s",
                        account_id,
                        exc,
                        exc_info=True,
                    )
                    return AccountFailure(account_id=account_id, error=exc)

        outcomes = await asyncio.gather(
            *(_query(account_id, ids) for account_id, ids in by_account.items())
        )

        events: list[Event] = []
        failures: list[AccountFailure] = []
        for outcome in outcomes:
            if isinstance(outcome, AccountFailure):
                failures.append(outcome)
            else:
                events.extend(outcome)

        if not events and failures:
            raise AggregateError(failures)
        if failures:
            logger.info(
                "Returning partial results: %d event(s), %d account(s) failed (%s)",
                len(events),
                len(failures),
                ", ".join(failure.account_id for failure in failures),
            )
        return events
