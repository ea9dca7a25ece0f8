"""OpenTelemetry initialization and tool span wrapper."""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from morgen_mcp.core.logging import reset_tool_context, set_tool_context

logger = logging.getLogger(__name__)

_TRACER_NAME = "morgen_mcp"
SERVICE_NAME = "morgen-mcp"

# Guard flag: True once the global TracerProvider has been installed.
_tracer_provider_installed: bool = False


def init_telemetry(service_name: str = SERVICE_NAME) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing for the adapter process.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a TracerProvider with
    an OTLP gRPC exporter on the first call. Otherwise the global no-op
    provider stays in place.

    Args:
        service_name: Service name reported on exported spans.

    Returns:
        A Tracer instance (real or no-op depending on config)
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op tracer")
        return trace.get_tracer(service_name)

    if _tracer_provider_installed:
        return trace.get_tracer(service_name)

    # Import exporter only when needed
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))

    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: endpoint=%s", endpoint)

    return trace.get_tracer(service_name)


class tool_span:
    """Create an OpenTelemetry span for an MCP tool invocation.

    Usage::

        with tool_span("search_events"):
            ...

    The span is named ``morgen.tool.<tool_name>``. While it is open the
    tool name is also bound to the logging context so every log line of the
    invocation carries it. Exceptions are recorded on the span and the span
    status is set to ERROR before the exception propagates.
    """

    def __init__(self, tool_name: str) -> None:
        self._tool_name = tool_name
        self._span_name = f"morgen.tool.{tool_name}"
        self._span: trace.Span | None = None
        self._token: object | None = None
        self._log_token: object | None = None

    def __enter__(self) -> trace.Span:
        tracer = trace.get_tracer(_TRACER_NAME)
        self._span = tracer.start_span(self._span_name)
        self._span.set_attribute("mcp.tool.name", self._tool_name)
        self._token = trace.context_api.attach(trace.set_span_in_context(self._span))
        self._log_token = set_tool_context(self._tool_name)
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._log_token is not None:
            reset_tool_context(self._log_token)
            self._log_token = None
        if self._span is None:
            return
        if exc_val is not None:
            self._span.set_status(trace.StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._span.end()
        if self._token is not None:
            trace.context_api.detach(self._token)
