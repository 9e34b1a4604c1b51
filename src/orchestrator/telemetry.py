"""Telemetry service for abstracting tracing.

Nodes, model calls and tool calls open spans through ``telemetry.start_span``
so the engine stays agnostic of the backend. OTEL is the default backend; an
in-memory backend is available for tests.
"""

import abc
import contextlib
import json
import logging
import os
from enum import Enum
from typing import Any, Dict, List, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from orchestrator.config import get_env_str

logger = logging.getLogger(__name__)

MAX_ATTRIBUTE_CHARS = 2048

_otel_initialized = False


def _setup_otel_sdk():
    """Configure the OTEL SDK once."""
    global _otel_initialized
    if _otel_initialized:
        return

    service_name = get_env_str("OTEL_SERVICE_NAME", "adops-orchestrator")
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))

    endpoint = get_env_str("OTEL_EXPORTER_OTLP_ENDPOINT")
    if "PYTEST_CURRENT_TEST" in os.environ or not endpoint:
        # No exporter: spans are recorded but never shipped
        trace.set_tracer_provider(provider)
        _otel_initialized = True
        logger.info("OTEL SDK initialized without exporter")
        return

    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _otel_initialized = True
    logger.info(f"OTEL SDK initialized with endpoint: {endpoint}")


class SpanKind(str, Enum):
    """Semantic span kinds for engine spans."""

    AGENT_NODE = "agent.node"
    TOOL_CALL = "tool.call"
    LLM_CALL = "llm.call"
    CHECKPOINT = "checkpoint"
    TURN = "turn"


def bound_attribute(value: Any) -> Any:
    """Make a value safe to attach to a span."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if not isinstance(value, str):
        try:
            value = json.dumps(value, sort_keys=True, default=str)
        except (TypeError, ValueError):
            value = str(value)
    if len(value) > MAX_ATTRIBUTE_CHARS:
        return value[: MAX_ATTRIBUTE_CHARS - 3] + "..."
    return value


class TelemetrySpan(abc.ABC):
    """Abstract interface for a telemetry span."""

    @abc.abstractmethod
    def set_attribute(self, key: str, value: Any) -> None:
        """Set a single span attribute."""

    def set_attributes(self, attributes: Dict[str, Any]) -> None:
        """Set multiple span attributes."""
        for key, value in attributes.items():
            self.set_attribute(key, value)

    @abc.abstractmethod
    def record_error(self, error: BaseException) -> None:
        """Mark the span as failed."""


class TelemetryBackend(abc.ABC):
    """Abstract base class for telemetry backends."""

    @abc.abstractmethod
    def configure(self) -> None:
        """Configure the backend."""

    @abc.abstractmethod
    @contextlib.contextmanager
    def start_span(self, name: str, kind: SpanKind, attributes: Dict[str, Any]):
        """Start a span as a context manager."""
        yield None


class OTELTelemetrySpan(TelemetrySpan):
    """OpenTelemetry implementation of TelemetrySpan."""

    def __init__(self, otel_span):
        """Initialize with an OTEL span object."""
        self._span = otel_span

    def set_attribute(self, key: str, value: Any) -> None:
        """Set a single span attribute."""
        bounded = bound_attribute(value)
        if bounded is not None:
            self._span.set_attribute(key, bounded)

    def record_error(self, error: BaseException) -> None:
        """Record the exception and set an error status."""
        self._span.record_exception(error)
        self._span.set_status(Status(StatusCode.ERROR, description=str(error)))


class OTELTelemetryBackend(TelemetryBackend):
    """OpenTelemetry implementation of TelemetryBackend."""

    def __init__(self, tracer_name: str = "adops-orchestrator"):
        """Initialize the OTEL backend."""
        self.tracer_name = tracer_name
        self._tracer = None

    def configure(self) -> None:
        """Configure OTEL SDK and initialize tracer."""
        _setup_otel_sdk()
        self._tracer = trace.get_tracer(self.tracer_name)

    @contextlib.contextmanager
    def start_span(self, name: str, kind: SpanKind, attributes: Dict[str, Any]):
        """Start an OTEL span as a context manager."""
        if self._tracer is None:
            self._tracer = trace.get_tracer(self.tracer_name)
        base_attrs = {"span.kind": kind.value}
        base_attrs.update({k: bound_attribute(v) for k, v in attributes.items() if v is not None})
        with self._tracer.start_as_current_span(
            name=name, kind=trace.SpanKind.INTERNAL, attributes=base_attrs
        ) as otel_span:
            yield OTELTelemetrySpan(otel_span)


class InMemoryTelemetrySpan(TelemetrySpan):
    """In-memory implementation of TelemetrySpan for testing."""

    def __init__(self, name: str, kind: SpanKind):
        """Initialize an in-memory span."""
        self.name = name
        self.kind = kind
        self.attributes: Dict[str, Any] = {}
        self.error: Optional[BaseException] = None
        self.is_finished = False

    def set_attribute(self, key: str, value: Any) -> None:
        """Set a single span attribute."""
        self.attributes[key] = bound_attribute(value)

    def record_error(self, error: BaseException) -> None:
        """Remember the error."""
        self.error = error


class InMemoryTelemetryBackend(TelemetryBackend):
    """In-memory implementation of TelemetryBackend for testing."""

    def __init__(self):
        """Initialize with empty storage."""
        self.spans: List[InMemoryTelemetrySpan] = []

    def configure(self) -> None:
        """Nothing to configure."""

    @contextlib.contextmanager
    def start_span(self, name: str, kind: SpanKind, attributes: Dict[str, Any]):
        """Start a span as a context manager."""
        span = InMemoryTelemetrySpan(name, kind)
        span.set_attributes(attributes)
        self.spans.append(span)
        try:
            yield span
        finally:
            span.is_finished = True


class TelemetryService:
    """Public surface for telemetry calls."""

    def __init__(self, backend: Optional[TelemetryBackend] = None):
        """Initialize the telemetry service, defaulting to OTEL."""
        self._backend = backend or OTELTelemetryBackend()

    def set_backend(self, backend: TelemetryBackend) -> None:
        """Switch backend at runtime (useful for testing)."""
        self._backend = backend

    def configure(self) -> None:
        """Configure the active backend."""
        self._backend.configure()

    @contextlib.contextmanager
    def start_span(
        self,
        name: str,
        kind: SpanKind = SpanKind.AGENT_NODE,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        """Start a span; exceptions escaping the block are recorded on it."""
        with self._backend.start_span(name, kind, attributes or {}) as span:
            try:
                yield span
            except Exception as exc:
                span.record_error(exc)
                raise


telemetry = TelemetryService()
