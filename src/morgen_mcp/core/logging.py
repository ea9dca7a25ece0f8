"""Structured logging for the Morgen adapter.

Every module logs through ``logging.getLogger(__name__)``; structlog's
ProcessorFormatter renders those records, so no call site imports structlog.

``fmt="text"`` renders colored lines for a terminal, ``fmt="json"`` renders
one JSON object per line. Either way the console handler writes to stderr,
since stdout is the MCP stdio channel.

Each record carries the active tool name (bound by ``tool_span``) and the
current OTel trace/span ids. API keys are masked before any handler writes.

With ``log_root`` set, JSON copies are kept on disk::

    <log_root>/
      morgen-mcp.log      # every record passing the root level
      transport.log       # httpx, httpcore and fastmcp only
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

from morgen_mcp.credentials import redact_api_key

# ---------------------------------------------------------------------------
# Tool context (asyncio-safe via ContextVar)
# ---------------------------------------------------------------------------

_tool_context: ContextVar[str | None] = ContextVar("tool_name", default=None)


def set_tool_context(name: str | None) -> object:
    """Set the tool name for the current async context; returns a reset token."""
    return _tool_context.set(name)


def reset_tool_context(token: object) -> None:
    _tool_context.reset(token)  # type: ignore[arg-type]


def get_tool_context() -> str | None:
    return _tool_context.get()


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_tool_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``tool`` key from the ContextVar into the event dict."""
    event_dict["tool"] = _tool_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id`` and ``span_id`` from the current OTel span."""
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


class CredentialRedactionFilter(logging.Filter):
    """Mask API key header values in formatted log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_api_key(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

# Third-party loggers capped at WARNING; with log_root set they also feed transport.log.
_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
    "mcp.server.lowlevel.server",
    "fastmcp",
)

_APP_LOG_FILENAME = "morgen-mcp.log"
_TRANSPORT_LOG_FILENAME = "transport.log"

_CONSOLE_TIME_FORMAT = "%H:%M:%S"


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    """Processors applied to every stdlib record before rendering."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_tool_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _formatter(
    renderer: structlog.types.Processor,
    pre_chain: list[structlog.types.Processor],
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


def _redacting(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(CredentialRedactionFilter())
    return handler


def _attach_log_files(root: logging.Logger, log_root: Path) -> None:
    log_root.mkdir(parents=True, exist_ok=True)
    formatter = _formatter(structlog.processors.JSONRenderer(), _pre_chain("iso"))

    app_handler = _redacting(logging.FileHandler(log_root / _APP_LOG_FILENAME), formatter)
    app_handler.setLevel(logging.DEBUG)
    root.addHandler(app_handler)

    transport_handler = _redacting(
        logging.FileHandler(log_root / _TRANSPORT_LOG_FILENAME), formatter
    )
    transport_handler.setLevel(logging.DEBUG)
    for name in _NOISE_LOGGERS:
        logging.getLogger(name).addHandler(transport_handler)


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
) -> None:
    """Install the stderr console handler (and optional JSON log files).

    Safe to call more than once: previously installed root handlers are
    replaced.

    Parameters
    ----------
    level:
        Root log level name, case-insensitive (e.g. "debug", "INFO").
    fmt:
        ``"text"`` or ``"json"``; applies to the console only.
    log_root:
        Directory for JSON log files; created if missing.
    """
    if fmt == "json":
        pre_chain = _pre_chain("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain(_CONSOLE_TIME_FORMAT)
        renderer = structlog.dev.ConsoleRenderer()

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_redacting(logging.StreamHandler(sys.stderr), _formatter(renderer, pre_chain)))
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        _attach_log_files(root, Path(log_root))

    # structlog.get_logger() callers share the console pre-chain.
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
