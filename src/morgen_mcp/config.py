"""Adapter configuration loading and validation.

Settings come from an optional ``morgen-mcp.toml`` and the process
environment. Environment variables win over the file; ``${VAR_NAME}``
references inside the file are resolved before validation.
"""

from __future__ import annotations

import os
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from morgen_mcp.cache import DEFAULT_CLEANUP_INTERVAL_SECONDS, DEFAULT_MAX_SIZE
from morgen_mcp.client import DEFAULT_REQUEST_TIMEOUT_SECONDS, MORGEN_API_BASE_URL
from morgen_mcp.credentials import API_KEY_ENV, validate_credentials

DEFAULT_CONFIG_FILENAME = "morgen-mcp.toml"

# Matches ${VAR_NAME} with alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Raised when adapter configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [morgen.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_root: str | None = None


@dataclass
class UpstreamConfig:
    """Upstream API settings from [morgen.upstream] section."""

    base_url: str = MORGEN_API_BASE_URL
    timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    fanout_concurrency: int = 1


@dataclass
class CacheConfig:
    """Response cache settings from [morgen.cache] section."""

    max_size: int = DEFAULT_MAX_SIZE
    cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS


@dataclass
class AdapterConfig:
    api_key: str
    timezone: str | None = None
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __repr__(self) -> str:
        return (
            f"AdapterConfig(api_key='***', timezone={self.timezone!r}, "
            f"upstream={self.upstream!r}, cache={self.cache!r}, logging={self.logging!r})"
        )

    @property
    def zone(self) -> ZoneInfo | None:
        return ZoneInfo(self.timezone) if self.timezone else None


def resolve_env_vars(value: Any, env: Mapping[str, str] | None = None) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaf values are returned
    unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    environ = os.environ if env is None else env
    if isinstance(value, dict):
        return {k: resolve_env_vars(v, environ) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item, environ) for item in value]

    if isinstance(value, str):
        return _resolve_string(value, environ)

    return value


def _resolve_string(s: str, env: Mapping[str, str]) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = env.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(f"Unresolved environment variable(s) in config value: {vars_str}")

    return result


def _read_toml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        return tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc


def _section(parent: Mapping[str, Any], name: str, qualified: str) -> dict[str, Any]:
    section = parent.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{qualified}] must be a table")
    return section


def _positive_number(raw: Any, qualified: str, kind: type[int] | type[float]) -> Any:
    try:
        value = kind(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid {qualified}: {raw!r}. Expected a number.") from exc
    if kind is int and isinstance(raw, float) and not raw.is_integer():
        raise ConfigError(f"Invalid {qualified}: {raw!r}. Expected a whole number.")
    if value <= 0:
        raise ConfigError(f"Invalid {qualified}: {raw!r}. Must be positive.")
    return value


def load_config(
    path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> AdapterConfig:
    """Build an :class:`AdapterConfig` from *path* (optional) and the environment.

    Parameters
    ----------
    path:
        TOML file to read. When ``None``, ``morgen-mcp.toml`` in the working
        directory is used if it exists.
    env:
        Environment mapping; defaults to ``os.environ``.

    Raises
    ------
    ConfigError
        If the file is malformed or a value is invalid.
    CredentialError
        If no API key is configured.
    """
    environ = os.environ if env is None else env

    data: dict[str, Any] = {}
    if path is not None:
        data = _read_toml(path)
    elif Path(DEFAULT_CONFIG_FILENAME).exists():
        data = _read_toml(Path(DEFAULT_CONFIG_FILENAME))
    data = resolve_env_vars(data, environ)

    morgen = _section(data, "morgen", "morgen")
    upstream_section = _section(morgen, "upstream", "morgen.upstream")
    cache_section = _section(morgen, "cache", "morgen.cache")
    logging_section = _section(morgen, "logging", "morgen.logging")

    # --- credential: env var > toml ---
    api_key = str(environ.get(API_KEY_ENV) or morgen.get("api_key") or "").strip()
    if not api_key:
        validate_credentials([API_KEY_ENV], env=environ)

    timezone = environ.get("MORGEN_TIMEZONE") or morgen.get("timezone")
    if timezone is not None:
        timezone = str(timezone).strip() or None
    if timezone is not None:
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Invalid morgen.timezone: {timezone!r}") from exc

    # --- [morgen.upstream] ---
    base_url = str(
        environ.get("MORGEN_API_BASE_URL") or upstream_section.get("base_url", MORGEN_API_BASE_URL)
    ).strip()
    if not base_url.startswith(("http://", "https://")):
        raise ConfigError(f"Invalid morgen.upstream.base_url: {base_url!r}")
    upstream = UpstreamConfig(
        base_url=base_url.rstrip("/"),
        timeout_seconds=_positive_number(
            upstream_section.get("timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            "morgen.upstream.timeout_seconds",
            float,
        ),
        fanout_concurrency=_positive_number(
            upstream_section.get("fanout_concurrency", 1),
            "morgen.upstream.fanout_concurrency",
            int,
        ),
    )

    # --- [morgen.cache] ---
    cache = CacheConfig(
        max_size=_positive_number(
            cache_section.get("max_size", DEFAULT_MAX_SIZE), "morgen.cache.max_size", int
        ),
        cleanup_interval_seconds=_positive_number(
            cache_section.get("cleanup_interval_seconds", DEFAULT_CLEANUP_INTERVAL_SECONDS),
            "morgen.cache.cleanup_interval_seconds",
            float,
        ),
    )

    # --- [morgen.logging] ---
    log_level = str(
        environ.get("MORGEN_LOG_LEVEL") or logging_section.get("level", "INFO")
    ).upper()
    log_format = str(
        environ.get("MORGEN_LOG_FORMAT") or logging_section.get("format", "text")
    ).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid morgen.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    logging_config = LoggingConfig(
        level=log_level,
        format=log_format,
        log_root=logging_section.get("log_root"),
    )

    return AdapterConfig(
        api_key=api_key,
        timezone=timezone,
        upstream=upstream,
        cache=cache,
        logging=logging_config,
    )
