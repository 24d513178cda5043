# ============================================================================
# OBSERVABILITY MIDDLEWARE
# ============================================================================
# STATUS: Middleware - Metrics and tracing stages
# PURPOSE: Request metrics and server spans through the capability interfaces
# ============================================================================
"""
Observability Middleware

Both stages are installed only when a real collaborator was supplied to
the pipeline; nothing here checks for a no-op per request.

Collaborator failures are logged at debug level and never change the
response.
"""

import logging
import time
from typing import Optional, Sequence

from starlette.datastructures import URL, Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.context import REQUEST_ID_HEADER, ensure_request_context
from core.observability import Metrics, SpanKind, Tracer
from middleware.base import ResponseInfo, guarded, observe_send, route_template
from middleware.skipper import SkipSet

logger = logging.getLogger(__name__)

DURATION_BUCKETS: Sequence[float] = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
SIZE_BUCKETS: Sequence[float] = (100, 1000, 10000, 100000, 1000000, 10000000)


class HttpInstruments:
    """The HTTP metric instruments, created once per pipeline."""

    def __init__(self, metrics: Metrics):
        self.requests_total = metrics.counter(
            "http_requests_total",
            "Total number of HTTP requests",
            labels=("method", "path", "status"),
        )
        self.request_duration = metrics.histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            labels=("method", "path", "status"),
            buckets=DURATION_BUCKETS,
        )
        self.request_size = metrics.histogram(
            "http_request_size_bytes",
            "HTTP request size in bytes",
            labels=("method", "path"),
            buckets=SIZE_BUCKETS,
        )
        self.response_size = metrics.histogram(
            "http_response_size_bytes",
            "HTTP response size in bytes",
            labels=("method", "path", "status"),
            buckets=SIZE_BUCKETS,
        )
        self.in_flight = metrics.gauge(
            "http_requests_in_flight",
            "Current number of HTTP requests being processed",
        )


def _content_length(scope: Scope) -> int:
    value = Headers(scope=scope).get("content-length", "")
    return int(value) if value.isdigit() else 0


class MetricsMiddleware:
    """
    Request metrics.

    The in-flight gauge is decremented in ``finally``, so failed and
    short-circuited requests are counted out too. Labels use the route
    template, not the raw path.
    """

    def __init__(
        self,
        app: ASGIApp,
        instruments: HttpInstruments,
        skipper: Optional[SkipSet] = None,
    ):
        self.app = app
        self.instruments = instruments
        self.skipper = skipper

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or (
            self.skipper is not None and self.skipper.matches(scope["method"], scope["path"])
        ):
            await self.app(scope, receive, send)
            return

        m = self.instruments
        method = scope["method"]
        info = ResponseInfo()
        guarded(m.in_flight.inc)
        start = time.perf_counter()
        try:
            await self.app(scope, receive, observe_send(send, info))
        finally:
            guarded(m.in_flight.dec)
            duration = time.perf_counter() - start
            path = route_template(scope)
            status = str(info.status_code)

            request_size = _content_length(scope)
            if request_size > 0:
                guarded(m.request_size.observe, float(request_size), method, path)
            guarded(m.requests_total.inc, method, path, status)
            guarded(m.request_duration.observe, duration, method, path, status)
            guarded(m.response_size.observe, float(info.body_size), method, path, status)


class TracingMiddleware:
    """
    Server spans.

    Incoming trace context is extracted from the request headers; a bad or
    missing context yields an unlinked span. Outgoing propagation headers
    plus X-Trace-ID / X-Span-ID are written on the response. Status >= 500
    marks the span errored with the handler-reported error messages.
    """

    def __init__(
        self,
        app: ASGIApp,
        tracer: Tracer,
        skipper: Optional[SkipSet] = None,
    ):
        self.app = app
        self.tracer = tracer
        self.skipper = skipper

    def _extract(self, headers: Headers):
        try:
            return self.tracer.extract(headers)
        except Exception as e:
            logger.debug(f"Trace context extraction failed, starting fresh: {e}")
            return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or (
            self.skipper is not None and self.skipper.matches(scope["method"], scope["path"])
        ):
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        ctx = ensure_request_context(scope)
        client = scope.get("client")
        span = guarded(
            self.tracer.start_span,
            f"{scope['method']} {scope['path']}",
            context=self._extract(headers),
            kind=SpanKind.SERVER,
            attributes={
                "http.method": scope["method"],
                "http.url": str(URL(scope=scope)),
                "http.host": headers.get("host", ""),
                "http.scheme": scope.get("scheme", "http"),
                "http.user_agent": headers.get("user-agent", ""),
                "http.request_id": ctx.request_id or headers.get(REQUEST_ID_HEADER, ""),
                "http.remote_addr": client[0] if client else "",
            },
        )
        if span is None:
            await self.app(scope, receive, send)
            return

        info = ResponseInfo()
        forward = observe_send(send, info)

        async def send_with_trace(message: Message) -> None:
            if message["type"] == "http.response.start":
                carrier = {}
                guarded(self.tracer.inject, span, carrier)
                response_headers = MutableHeaders(scope=message)
                for key, value in carrier.items():
                    response_headers[key] = value
                if span.trace_id:
                    response_headers["X-Trace-ID"] = span.trace_id
                    response_headers["X-Span-ID"] = span.span_id
            await forward(message)

        errors = ctx.errors
        try:
            await self.app(scope, receive, send_with_trace)
        except Exception as exc:
            errors.append(str(exc) or type(exc).__name__)
            raise
        finally:
            self._finish(span, scope, info, errors)

    def _finish(self, span, scope: Scope, info: ResponseInfo, errors) -> None:
        guarded(span.set_attribute, "http.route", route_template(scope))
        guarded(span.set_attribute, "http.status_code", info.status_code)
        guarded(span.set_attribute, "http.response_size", info.body_size)
        if info.status_code >= 500:
            guarded(span.set_attribute, "error", True)
            for message in errors:
                guarded(span.add_event, "error", {"error.message": message})
            guarded(span.set_error, errors[-1] if errors else f"HTTP {info.status_code}")
        guarded(span.end)


__all__ = [
    "DURATION_BUCKETS",
    "SIZE_BUCKETS",
    "HttpInstruments",
    "MetricsMiddleware",
    "TracingMiddleware",
]
