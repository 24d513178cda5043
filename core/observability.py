# ============================================================================
# OBSERVABILITY
# ============================================================================
# STATUS: Core - Metrics and tracing capabilities
# PURPOSE: Narrow interfaces the middleware pipeline instruments through
# ============================================================================
"""
Observability

Defines the two optional collaborators of the middleware pipeline:

- Metrics: counter / histogram / gauge factories with label support
- Tracer: context extraction / injection and server spans

Each capability has an explicit no-op implementation, an in-process
implementation (used locally and in tests) and an OpenTelemetry-backed
implementation for production.

Usage:
    from core.observability import ObservabilityConfig, build_capabilities

    metrics, tracer = build_capabilities(ObservabilityConfig.from_env())
    pipeline = MiddlewarePipeline(logger, skipper, metrics=metrics, tracer=tracer)
"""

import os
import logging
import re
import secrets
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from opentelemetry import metrics as otel_metrics
from opentelemetry import propagate
from opentelemetry import trace as otel_trace
from opentelemetry.trace import Status, StatusCode

logger = logging.getLogger(__name__)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class ObservabilityConfig:
    """Configuration for observability."""
    service_name: str = "http-backbone"
    service_version: str = "0.0.0"
    enable_tracing: bool = True
    enable_metrics: bool = True

    @classmethod
    def from_env(cls) -> "ObservabilityConfig":
        """Create config from environment variables."""
        return cls(
            service_name=os.getenv("OTEL_SERVICE_NAME", "http-backbone"),
            service_version=os.getenv("SERVICE_VERSION", "0.0.0"),
            enable_tracing=os.getenv("ENABLE_TRACING", "true").lower() == "true",
            enable_metrics=os.getenv("ENABLE_METRICS", "true").lower() == "true",
        )


# ============================================================================
# METRICS CAPABILITY
# ============================================================================

class Counter(ABC):
    @abstractmethod
    def inc(self, *label_values: str, value: float = 1.0) -> None:
        pass


class Histogram(ABC):
    @abstractmethod
    def observe(self, value: float, *label_values: str) -> None:
        pass


class Gauge(ABC):
    @abstractmethod
    def inc(self, value: float = 1.0) -> None:
        pass

    @abstractmethod
    def dec(self, value: float = 1.0) -> None:
        pass


class Metrics(ABC):
    """
    Metrics capability.

    Instruments are created once (at pipeline build time) and are safe to
    use concurrently from any number of requests.
    """

    @abstractmethod
    def counter(self, name: str, help: str = "", labels: Sequence[str] = ()) -> Counter:
        pass

    @abstractmethod
    def histogram(
        self,
        name: str,
        help: str = "",
        labels: Sequence[str] = (),
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        pass

    @abstractmethod
    def gauge(self, name: str, help: str = "") -> Gauge:
        pass


class _NoopInstrument(Counter, Histogram, Gauge):
    def inc(self, *args, **kwargs) -> None:
        pass

    def dec(self, *args, **kwargs) -> None:
        pass

    def observe(self, *args, **kwargs) -> None:
        pass


_NOOP_INSTRUMENT = _NoopInstrument()


class NoopMetrics(Metrics):
    """Metrics that record nothing."""

    def counter(self, name, help="", labels=()):
        return _NOOP_INSTRUMENT

    def histogram(self, name, help="", labels=(), buckets=None):
        return _NOOP_INSTRUMENT

    def gauge(self, name, help=""):
        return _NOOP_INSTRUMENT


@dataclass
class MetricPoint:
    """A single metric data point."""
    name: str
    value: float
    timestamp: float = field(default_factory=time.time)
    tags: Dict[str, str] = field(default_factory=dict)


def _label_map(name: str, labels: Sequence[str], values: Sequence[str]) -> Dict[str, str]:
    if len(labels) != len(values):
        raise ValueError(f"Metric {name} expects labels {list(labels)}, got {len(values)} values")
    return dict(zip(labels, values))


class InMemoryMetrics(Metrics):
    """
    In-process metrics collector.

    Supports counters, gauges, and histograms. All updates go through one
    lock, so concurrent requests never lose increments. Only the most recent
    ``max_points`` raw points are kept; aggregates are unaffected.
    """

    def __init__(self, max_points: int = 10000):
        self.max_points = max_points
        self._lock = threading.Lock()
        self._points: deque = deque(maxlen=max_points)
        self._counters: Dict[Tuple[str, Tuple[str, ...]], float] = {}
        self._histograms: Dict[Tuple[str, Tuple[str, ...]], List[float]] = {}
        self._gauges: Dict[str, float] = {}

    def counter(self, name, help="", labels=()):
        return _InMemoryCounter(self, name, tuple(labels))

    def histogram(self, name, help="", labels=(), buckets=None):
        return _InMemoryHistogram(self, name, tuple(labels))

    def gauge(self, name, help=""):
        with self._lock:
            self._gauges.setdefault(name, 0.0)
        return _InMemoryGauge(self, name)

    def _add(self, name: str, labels: Tuple[str, ...], values: Tuple[str, ...], value: float) -> None:
        tags = _label_map(name, labels, values)
        with self._lock:
            key = (name, values)
            self._counters[key] = self._counters.get(key, 0.0) + value
            self._points.append(MetricPoint(name=name, value=value, tags=tags))

    def _observe(self, name: str, labels: Tuple[str, ...], values: Tuple[str, ...], value: float) -> None:
        tags = _label_map(name, labels, values)
        with self._lock:
            self._histograms.setdefault((name, values), []).append(value)
            self._points.append(MetricPoint(name=name, value=value, tags=tags))

    def _shift(self, name: str, delta: float) -> None:
        with self._lock:
            self._gauges[name] = self._gauges.get(name, 0.0) + delta

    # Read side ---------------------------------------------------------------

    def counter_value(self, name: str, *label_values: str) -> float:
        with self._lock:
            return self._counters.get((name, tuple(label_values)), 0.0)

    def observations(self, name: str, *label_values: str) -> List[float]:
        with self._lock:
            return list(self._histograms.get((name, tuple(label_values)), []))

    def gauge_value(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def get_metrics(self) -> List[MetricPoint]:
        """Get all collected metric points."""
        with self._lock:
            return list(self._points)

    def clear(self) -> None:
        """Clear collected metrics."""
        with self._lock:
            self._points.clear()
            self._counters.clear()
            self._histograms.clear()
            for name in self._gauges:
                self._gauges[name] = 0.0


class _InMemoryCounter(Counter):
    def __init__(self, owner: InMemoryMetrics, name: str, labels: Tuple[str, ...]):
        self._owner, self._name, self._labels = owner, name, labels

    def inc(self, *label_values, value=1.0):
        self._owner._add(self._name, self._labels, tuple(label_values), value)


class _InMemoryHistogram(Histogram):
    def __init__(self, owner: InMemoryMetrics, name: str, labels: Tuple[str, ...]):
        self._owner, self._name, self._labels = owner, name, labels

    def observe(self, value, *label_values):
        self._owner._observe(self._name, self._labels, tuple(label_values), value)


class _InMemoryGauge(Gauge):
    def __init__(self, owner: InMemoryMetrics, name: str):
        self._owner, self._name = owner, name

    def inc(self, value=1.0):
        self._owner._shift(self._name, value)

    def dec(self, value=1.0):
        self._owner._shift(self._name, -value)


class OpenTelemetryMetrics(Metrics):
    """Metrics backed by an OpenTelemetry meter."""

    def __init__(self, name: str = "http-backbone"):
        self._meter = otel_metrics.get_meter(name)

    def counter(self, name, help="", labels=()):
        return _OtelCounter(self._meter.create_counter(name, description=help), name, tuple(labels))

    def histogram(self, name, help="", labels=(), buckets=None):
        # Bucket layout is left to the SDK's view configuration
        unit = "s" if name.endswith("_seconds") else ("By" if name.endswith("_bytes") else "")
        instrument = self._meter.create_histogram(name, unit=unit, description=help)
        return _OtelHistogram(instrument, name, tuple(labels))

    def gauge(self, name, help=""):
        return _OtelGauge(self._meter.create_up_down_counter(name, description=help))


class _OtelCounter(Counter):
    def __init__(self, instrument, name, labels):
        self._instrument, self._name, self._labels = instrument, name, labels

    def inc(self, *label_values, value=1.0):
        self._instrument.add(value, attributes=_label_map(self._name, self._labels, label_values))


class _OtelHistogram(Histogram):
    def __init__(self, instrument, name, labels):
        self._instrument, self._name, self._labels = instrument, name, labels

    def observe(self, value, *label_values):
        self._instrument.record(value, attributes=_label_map(self._name, self._labels, label_values))


class _OtelGauge(Gauge):
    def __init__(self, instrument):
        self._instrument = instrument

    def inc(self, value=1.0):
        self._instrument.add(value)

    def dec(self, value=1.0):
        self._instrument.add(-value)


# ============================================================================
# TRACING CAPABILITY
# ============================================================================

class SpanKind(str, Enum):
    SERVER = "server"
    CLIENT = "client"
    INTERNAL = "internal"


class Span(ABC):
    """A unit of traced work."""

    @property
    @abstractmethod
    def trace_id(self) -> str:
        pass

    @property
    @abstractmethod
    def span_id(self) -> str:
        pass

    @abstractmethod
    def set_attribute(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        pass

    @abstractmethod
    def set_error(self, message: str) -> None:
        pass

    @abstractmethod
    def end(self) -> None:
        pass


class Tracer(ABC):
    """
    Tracer capability.

    ``extract`` may raise on malformed incoming headers; callers fall back
    to a fresh context. ``inject`` writes propagation headers into a
    mutable header mapping.
    """

    @abstractmethod
    def extract(self, headers: Mapping[str, str]) -> Any:
        pass

    @abstractmethod
    def start_span(
        self,
        name: str,
        context: Any = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> Span:
        pass

    @abstractmethod
    def inject(self, span: Span, headers: MutableMapping[str, str]) -> None:
        pass


class _NoopSpan(Span):
    trace_id = ""
    span_id = ""

    def set_attribute(self, key, value):
        pass

    def add_event(self, name, attributes=None):
        pass

    def set_error(self, message):
        pass

    def end(self):
        pass


class NoopTracer(Tracer):
    """Tracer that creates no spans and writes no headers."""

    def extract(self, headers):
        return None

    def start_span(self, name, context=None, kind=SpanKind.INTERNAL, attributes=None):
        return _NoopSpan()

    def inject(self, span, headers):
        pass


# W3C trace context: version-traceid-parentid-flags
_TRACEPARENT_RE = re.compile(r"^([0-9a-f]{2})-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})$")


@dataclass
class LocalSpan(Span):
    """
    In-process span.

    Records attributes, events and status so they can be inspected after
    the request finishes.
    """
    name: str
    kind: SpanKind = SpanKind.INTERNAL
    _trace_id: str = field(default_factory=lambda: secrets.token_hex(16))
    _span_id: str = field(default_factory=lambda: secrets.token_hex(8))
    parent_span_id: Optional[str] = None
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    status: str = "OK"
    status_message: Optional[str] = None
    _on_end: Any = None

    @property
    def trace_id(self) -> str:
        return self._trace_id

    @property
    def span_id(self) -> str:
        return self._span_id

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        self.events.append({
            "name": name,
            "timestamp": time.time(),
            "attributes": attributes or {},
        })

    def set_error(self, message: str) -> None:
        self.status = "ERROR"
        self.status_message = message

    def end(self) -> None:
        if self.end_time is not None:
            return
        self.end_time = time.time()
        if self._on_end:
            self._on_end(self)

    @property
    def duration_ms(self) -> float:
        end = self.end_time or time.time()
        return (end - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "duration_ms": self.duration_ms,
            "attributes": self.attributes,
            "events": self.events,
            "status": self.status,
            "status_message": self.status_message,
        }


class LocalTracer(Tracer):
    """
    In-process tracer speaking W3C ``traceparent``.

    Finished spans are kept in memory (bounded) for inspection.
    """

    def __init__(self, max_spans: int = 1000):
        self.max_spans = max_spans
        self._lock = threading.Lock()
        self._finished: List[LocalSpan] = []

    def extract(self, headers: Mapping[str, str]) -> Optional[Tuple[str, str]]:
        """Return (trace_id, parent_span_id) or None. Malformed header raises ValueError."""
        value = None
        for key, v in headers.items():
            if key.lower() == "traceparent":
                value = v
                break
        if value is None:
            return None
        match = _TRACEPARENT_RE.match(value.strip().lower())
        if not match:
            raise ValueError(f"Malformed traceparent: {value!r}")
        return match.group(2), match.group(3)

    def start_span(self, name, context=None, kind=SpanKind.INTERNAL, attributes=None):
        span = LocalSpan(name=name, kind=kind, _on_end=self._record)
        if context:
            span._trace_id, span.parent_span_id = context
        for key, value in (attributes or {}).items():
            span.set_attribute(key, value)
        return span

    def inject(self, span, headers):
        headers["traceparent"] = f"00-{span.trace_id}-{span.span_id}-01"

    def _record(self, span: LocalSpan) -> None:
        with self._lock:
            self._finished.append(span)
            if len(self._finished) > self.max_spans:
                del self._finished[0]
        logger.debug(f"Span completed: {span.name} ({span.duration_ms:.2f}ms)")

    def finished_spans(self) -> List[LocalSpan]:
        with self._lock:
            return list(self._finished)


_OTEL_KINDS = {
    SpanKind.SERVER: otel_trace.SpanKind.SERVER,
    SpanKind.CLIENT: otel_trace.SpanKind.CLIENT,
    SpanKind.INTERNAL: otel_trace.SpanKind.INTERNAL,
}


class OpenTelemetrySpan(Span):
    def __init__(self, otel_span):
        self._otel_span = otel_span

    @property
    def trace_id(self) -> str:
        # Without an SDK the API hands out non-recording spans with zero ids.
        context = self._otel_span.get_span_context()
        return format(context.trace_id, "032x") if context.is_valid else ""

    @property
    def span_id(self) -> str:
        context = self._otel_span.get_span_context()
        return format(context.span_id, "016x") if context.is_valid else ""

    def set_attribute(self, key, value):
        if value is not None:
            self._otel_span.set_attribute(key, value)

    def add_event(self, name, attributes=None):
        self._otel_span.add_event(name, attributes=attributes or {})

    def set_error(self, message):
        self._otel_span.set_status(Status(StatusCode.ERROR, message))

    def end(self):
        self._otel_span.end()


class OpenTelemetryTracer(Tracer):
    """Tracer backed by the OpenTelemetry API and the globally configured propagator."""

    def __init__(self, name: str = "http-backbone"):
        self._tracer = otel_trace.get_tracer(name)

    def extract(self, headers):
        return propagate.extract(carrier=dict(headers))

    def start_span(self, name, context=None, kind=SpanKind.INTERNAL, attributes=None):
        clean = {k: v for k, v in (attributes or {}).items() if v is not None}
        otel_span = self._tracer.start_span(
            name,
            context=context,
            kind=_OTEL_KINDS[kind],
            attributes=clean,
        )
        return OpenTelemetrySpan(otel_span)

    def inject(self, span, headers):
        if isinstance(span, OpenTelemetrySpan):
            propagate.inject(headers, context=otel_trace.set_span_in_context(span._otel_span))


# ============================================================================
# FACTORY
# ============================================================================

def build_capabilities(config: Optional[ObservabilityConfig] = None) -> Tuple[Metrics, Tracer]:
    """
    Select the metrics and tracer implementations for a process.

    Disabled capabilities resolve to their no-op implementation, which the
    pipeline recognises at build time and does not install.
    """
    config = config or ObservabilityConfig.from_env()
    metrics: Metrics = (
        OpenTelemetryMetrics(config.service_name) if config.enable_metrics else NoopMetrics()
    )
    tracer: Tracer = (
        OpenTelemetryTracer(config.service_name) if config.enable_tracing else NoopTracer()
    )
    logger.info(
        f"Observability initialized: service={config.service_name}, "
        f"tracing={config.enable_tracing}, metrics={config.enable_metrics}"
    )
    return metrics, tracer


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ObservabilityConfig",
    "Counter",
    "Histogram",
    "Gauge",
    "Metrics",
    "NoopMetrics",
    "MetricPoint",
    "InMemoryMetrics",
    "OpenTelemetryMetrics",
    "SpanKind",
    "Span",
    "Tracer",
    "NoopTracer",
    "LocalSpan",
    "LocalTracer",
    "OpenTelemetrySpan",
    "OpenTelemetryTracer",
    "build_capabilities",
]
