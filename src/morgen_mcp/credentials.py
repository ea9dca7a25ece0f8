"""Credential validation for adapter startup.

Checks that required environment variables are present, warns about
missing optional ones, and reports all missing variables in one error.
Also provides redaction so the API key never reaches log output.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping

logger = logging.getLogger(__name__)

API_KEY_ENV = "MORGEN_API_KEY"

_API_KEY_HEADER_PATTERN = re.compile(r"(?i)(ApiKey\s+)([^\s'\",;]+)")


class CredentialError(Exception):
    """Raised when required credentials are missing."""


def validate_credentials(
    env_required: list[str],
    env_optional: list[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> None:
    """Validate that all required environment variables are set.

    Parameters
    ----------
    env_required:
        Variables that must be set to a non-blank value.
    env_optional:
        Variables that are only warned about when missing.
    env:
        Environment mapping; defaults to ``os.environ``.

    Raises
    ------
    CredentialError
        If any required variable is missing, listing every one of them.
    """
    environ = os.environ if env is None else env
    missing = [var for var in env_required if not (environ.get(var) or "").strip()]

    for var in env_optional or []:
        if not environ.get(var):
            logger.warning("Optional env var %s is not set", var)

    if missing:
        lines = [f"  - {var}" for var in missing]
        msg = "Missing required environment variables:\n" + "\n".join(lines)
        if API_KEY_ENV in missing:
            msg += (
                f"\nSet {API_KEY_ENV} to an API key from https://platform.morgen.so "
                "(Developers > API keys)."
            )
        raise CredentialError(msg)


def redact_api_key(message: str) -> str:
    """Mask ``ApiKey <value>`` pairs in *message*."""
    return _API_KEY_HEADER_PATTERN.sub(r"\1[REDACTED]", message)
