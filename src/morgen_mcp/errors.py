"""Error taxonomy shared by the Morgen client, aggregator and query façade."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class MorgenError(RuntimeError):
    """Base error for every failure surfaced by the adapter core."""


class ValidationError(MorgenError):
    """Raised when caller input is rejected before any network call."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ConfigurationError(MorgenError):
    """Raised when the upstream account has nothing to query (no accounts/calendars)."""


class NetworkError(MorgenError):
    """Raised when the upstream service cannot be reached (DNS, refused, timeout)."""


class UpstreamError(MorgenError):
    """Raised when the upstream service answers with a non-2xx status."""

    def __init__(
        self,
        *,
        status_code: int,
        message: str,
        details: Any = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(f"Morgen API request failed ({status_code}): {message}")


class NotFoundError(MorgenError):
    """Raised when a referenced calendar or account id is not known upstream."""


@dataclass(frozen=True)
class AccountFailure:
    """One account whose events query failed during a fan-out."""

    account_id: str
    error: Exception

    @property
    def message(self) -> str:
        return f"Account {self.account_id}: {self.error}"


class AggregateError(MorgenError):
    """Raised when every account in a fan-out failed and no events were returned."""

    def __init__(self, failures: list[AccountFailure]) -> None:
        self.failures = list(failures)
        lines = "\n".join(failure.message for failure in self.failures)
        super().__init__(f"Failed to fetch events from all accounts:\n{lines}")

    @property
    def account_ids(self) -> list[str]:
        return [failure.account_id for failure in self.failures]
