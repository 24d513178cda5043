# ============================================================================
# MIDDLEWARE PIPELINE TESTS
# ============================================================================
# STATUS: Tests - Stage ordering, recovery, logging, metrics, tracing
# PURPOSE: Verify the request pipeline end to end through a FastAPI app
# ============================================================================
"""
Middleware Pipeline Tests

Uses FastAPI TestClient with the in-memory metrics collector and the local
tracer as recording fakes; MagicMock stands in for failing collaborators.

Run with:
    pytest tests/test_middleware.py -v
"""

import logging
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from core.config import DisabledURL, HttpConfig, LoggingConfig, RequestConfig
from core.context import get_request_id, record_error
from core.observability import (
    InMemoryMetrics,
    LocalTracer,
    NoopMetrics,
    NoopTracer,
    ObservabilityConfig,
    build_capabilities,
)
from middleware import MiddlewarePipeline, new_skipper
from responses import error, ok


TRACEPARENT = "00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01"


def _make_app(pipeline, calls=None):
    """FastAPI app with a few representative routes behind the pipeline."""
    app = FastAPI()

    @app.get("/items/{item_id}")
    async def get_item(item_id: int, request: Request):
        if calls is not None:
            calls.append(item_id)
        return ok(request, {"id": item_id})

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    @app.get("/unavailable")
    async def unavailable(request: Request):
        record_error(request, "db timeout")
        return error(request, 503, "unavailable", "db timeout")

    @app.get("/rid")
    async def rid(request: Request):
        return ok(request, {"rid": get_request_id(request)})

    @app.get("/healthz")
    async def healthz():
        return {"ok": True, "details": {}}

    pipeline.install(app)
    return app


def _http_records(caplog):
    return [r for r in caplog.records if r.name == "http" and r.getMessage() == "http"]


# ============================================================================
# COMPOSITION
# ============================================================================

class TestComposition:

    def test_stage_order_with_all_collaborators(self):
        pipeline = MiddlewarePipeline(
            skipper=new_skipper(),
            metrics=InMemoryMetrics(),
            tracer=LocalTracer(),
            server_version="1.0.0",
        )
        assert [s.name for s in pipeline.stages()] == [
            "RecoveryMiddleware",
            "RequestIDMiddleware",
            "MetaMiddleware",
            "LoggingMiddleware",
            "MetricsMiddleware",
            "TracingMiddleware",
        ]

    def test_noop_collaborators_install_nothing(self):
        pipeline = MiddlewarePipeline(metrics=NoopMetrics(), tracer=NoopTracer())
        assert [s.name for s in pipeline.stages()] == [
            "RecoveryMiddleware",
            "RequestIDMiddleware",
            "LoggingMiddleware",
        ]

    def test_noop_tracer_leaves_no_headers(self):
        client = TestClient(_make_app(MiddlewarePipeline(tracer=NoopTracer())))
        response = client.get("/items/1")
        assert "x-trace-id" not in response.headers
        assert "x-span-id" not in response.headers

    def test_opentelemetry_without_sdk_adds_no_trace_ids(self):
        _, tracer = build_capabilities(ObservabilityConfig())
        client = TestClient(_make_app(MiddlewarePipeline(tracer=tracer)))
        response = client.get("/items/1")
        assert response.status_code == 200
        assert "x-trace-id" not in response.headers
        assert "x-span-id" not in response.headers
        assert "traceparent" not in response.headers

    def test_extra_middleware_runs_after_logging(self):
        seen = []

        class Marker:
            def __init__(self, app, label):
                self.app = app
                self.label = label

            async def __call__(self, scope, receive, send):
                if scope["type"] == "http":
                    seen.append((self.label, scope["state"]["request_context"].request_id))
                await self.app(scope, receive, send)

        pipeline = MiddlewarePipeline(extra=[(Marker, {"label": "extra"})])
        assert [s.name for s in pipeline.stages()][-1] == "Marker"

        client = TestClient(_make_app(pipeline))
        client.get("/items/1", headers={"X-Request-Id": "abc"})
        assert seen == [("extra", "abc")]

    def test_wrap_bare_asgi_app(self):
        async def app(scope, receive, send):
            await send({"type": "http.response.start", "status": 204, "headers": []})
            await send({"type": "http.response.body", "body": b""})

        wrapped = MiddlewarePipeline().wrap(app)
        response = TestClient(wrapped).get("/x")
        assert response.status_code == 204
        assert "x-request-id" in response.headers


# ============================================================================
# RECOVERY + REQUEST ID
# ============================================================================

class TestRecovery:

    def test_exception_becomes_500_envelope(self, caplog):
        caplog.set_level(logging.ERROR, logger="http")
        client = TestClient(_make_app(MiddlewarePipeline()))

        response = client.get("/boom", headers={"X-Request-Id": "req-500"})

        assert response.status_code == 500
        assert response.json() == {
            "ok": False,
            "error": {"code": "internal_error", "message": "internal server error"},
        }
        assert response.headers["x-request-id"] == "req-500"

        recovered = [r for r in caplog.records if r.getMessage() == "http panic recovered"]
        assert len(recovered) == 1
        assert recovered[0].extra["rid"] == "req-500"
        assert recovered[0].extra["error"] == "kaboom"

    def test_failure_does_not_affect_next_request(self):
        client = TestClient(_make_app(MiddlewarePipeline()))
        assert client.get("/boom").status_code == 500
        assert client.get("/items/7").json() == {"ok": True, "data": {"id": 7}}

    def test_500_envelope_carries_meta_when_enabled(self):
        client = TestClient(_make_app(MiddlewarePipeline(server_version="2.0.0")))
        body = client.get("/boom").json()
        assert body["meta"]["server"] == "2.0.0"
        assert body["meta"]["request_id"]

    def test_500_carries_date_and_server_version(self):
        client = TestClient(_make_app(MiddlewarePipeline(server_version="2.0.0")))
        response = client.get("/boom")
        assert response.status_code == 500
        assert len(response.headers.get_list("date")) == 1
        assert response.headers["x-server-version"] == "2.0.0"

    def test_500_without_meta_adds_no_date(self):
        response = TestClient(_make_app(MiddlewarePipeline())).get("/boom")
        assert "date" not in response.headers
        assert "x-server-version" not in response.headers


class TestRequestID:

    def test_incoming_id_is_echoed(self):
        client = TestClient(_make_app(MiddlewarePipeline()))
        response = client.get("/rid", headers={"x-request-id": "from-upstream"})
        assert response.headers["x-request-id"] == "from-upstream"
        assert response.json()["data"]["rid"] == "from-upstream"

    def test_id_generated_when_missing(self):
        client = TestClient(_make_app(MiddlewarePipeline()))
        first = client.get("/rid")
        second = client.get("/rid")
        assert first.headers["x-request-id"] == first.json()["data"]["rid"]
        assert len(first.headers["x-request-id"]) == 36
        assert first.headers["x-request-id"] != second.headers["x-request-id"]

    def test_meta_uses_the_same_id(self):
        client = TestClient(_make_app(MiddlewarePipeline(with_meta=True)))
        response = client.get("/items/1")
        assert response.json()["meta"]["request_id"] == response.headers["x-request-id"]


# ============================================================================
# ACCESS LOGGING
# ============================================================================

class TestLogging:

    def test_request_is_logged(self, caplog):
        caplog.set_level(logging.INFO, logger="http")
        client = TestClient(_make_app(MiddlewarePipeline(skipper=new_skipper())))

        client.get("/items/3", headers={"X-Request-Id": "log-1"})

        records = _http_records(caplog)
        assert len(records) == 1
        data = records[0].extra
        assert data["rid"] == "log-1"
        assert data["method"] == "GET"
        assert data["path"] == "/items/3"
        assert data["status"] == 200
        assert data["duration_ms"] >= 0

    def test_skipped_request_still_handled(self, caplog):
        caplog.set_level(logging.INFO, logger="http")
        calls = []
        config = HttpConfig(request=RequestConfig(logging=LoggingConfig(
            disabled_urls=(DisabledURL(method="GET", url_pattern=r"^/items/\d+$"),),
        )))
        client = TestClient(_make_app(MiddlewarePipeline(skipper=new_skipper(config)), calls))

        response = client.get("/items/9")

        assert response.status_code == 200
        assert calls == [9]
        assert _http_records(caplog) == []

    def test_probe_not_logged(self, caplog):
        caplog.set_level(logging.INFO, logger="http")
        client = TestClient(_make_app(MiddlewarePipeline(skipper=new_skipper())))
        assert client.get("/healthz").status_code == 200
        assert _http_records(caplog) == []

    def test_failed_request_logged_as_500(self, caplog):
        caplog.set_level(logging.INFO, logger="http")
        client = TestClient(_make_app(MiddlewarePipeline()))
        client.get("/boom")
        assert [r.extra["status"] for r in _http_records(caplog)] == [500]


# ============================================================================
# METRICS
# ============================================================================

class TestMetrics:

    def test_request_recorded_with_route_template(self):
        metrics = InMemoryMetrics()
        client = TestClient(_make_app(MiddlewarePipeline(skipper=new_skipper(), metrics=metrics)))

        client.get("/items/1")
        client.get("/items/2")

        assert metrics.counter_value("http_requests_total", "GET", "/items/{item_id}", "200") == 2
        assert len(metrics.observations("http_request_duration_seconds", "GET", "/items/{item_id}", "200")) == 2
        sizes = metrics.observations("http_response_size_bytes", "GET", "/items/{item_id}", "200")
        assert all(size > 0 for size in sizes)
        assert metrics.gauge_value("http_requests_in_flight") == 0

    def test_failure_recorded_and_gauge_released(self):
        metrics = InMemoryMetrics()
        client = TestClient(_make_app(MiddlewarePipeline(metrics=metrics)))

        client.get("/boom")

        assert metrics.counter_value("http_requests_total", "GET", "/boom", "500") == 1
        assert metrics.gauge_value("http_requests_in_flight") == 0

    def test_unmatched_route_label(self):
        metrics = InMemoryMetrics()
        client = TestClient(_make_app(MiddlewarePipeline(metrics=metrics)))
        client.get("/nope")
        assert metrics.counter_value("http_requests_total", "GET", "unmatched", "404") == 1

    def test_request_size_recorded(self):
        metrics = InMemoryMetrics()
        app = _make_app(MiddlewarePipeline(metrics=metrics))

        @app.post("/echo")
        async def echo(request: Request):
            return ok(request, await request.json())

        TestClient(app).post("/echo", content=b'{"name":"x"}', headers={"content-type": "application/json"})
        assert metrics.observations("http_request_size_bytes", "POST", "/echo") == [len(b'{"name":"x"}')]

    def test_probes_not_measured(self):
        metrics = InMemoryMetrics()
        client = TestClient(_make_app(MiddlewarePipeline(skipper=new_skipper(), metrics=metrics)))
        client.get("/healthz")
        assert metrics.get_metrics() == []

    def test_broken_metrics_never_fail_request(self):
        metrics = MagicMock()
        metrics.counter.return_value.inc.side_effect = RuntimeError("exporter down")
        metrics.histogram.return_value.observe.side_effect = RuntimeError("exporter down")
        metrics.gauge.return_value.inc.side_effect = RuntimeError("exporter down")
        metrics.gauge.return_value.dec.side_effect = RuntimeError("exporter down")

        client = TestClient(_make_app(MiddlewarePipeline(metrics=metrics)))
        response = client.get("/items/5")
        assert response.status_code == 200
        assert response.json()["data"] == {"id": 5}


# ============================================================================
# TRACING
# ============================================================================

class TestTracing:

    def test_server_span_and_headers(self):
        tracer = LocalTracer()
        client = TestClient(_make_app(MiddlewarePipeline(tracer=tracer)))

        response = client.get("/items/1", headers={"X-Request-Id": "trace-rid", "User-Agent": "probe/1"})

        spans = tracer.finished_spans()
        assert len(spans) == 1
        span = spans[0]
        assert span.kind.value == "server"
        assert span.attributes["http.method"] == "GET"
        assert span.attributes["http.request_id"] == "trace-rid"
        assert span.attributes["http.user_agent"] == "probe/1"
        assert span.attributes["http.status_code"] == 200
        assert span.attributes["http.route"] == "/items/{item_id}"
        assert span.status == "OK"

        assert response.headers["x-trace-id"] == span.trace_id
        assert response.headers["x-span-id"] == span.span_id
        assert response.headers["traceparent"] == f"00-{span.trace_id}-{span.span_id}-01"

    def test_incoming_context_is_continued(self):
        tracer = LocalTracer()
        client = TestClient(_make_app(MiddlewarePipeline(tracer=tracer)))

        client.get("/items/1", headers={"traceparent": TRACEPARENT})

        span = tracer.finished_spans()[0]
        assert span.trace_id == "0af7651916cd43dd8448eb211c80319c"
        assert span.parent_span_id == "b7ad6b7169203331"

    def test_malformed_context_starts_fresh(self):
        tracer = LocalTracer()
        client = TestClient(_make_app(MiddlewarePipeline(tracer=tracer)))

        response = client.get("/items/1", headers={"traceparent": "garbage"})

        assert response.status_code == 200
        span = tracer.finished_spans()[0]
        assert span.parent_span_id is None
        assert span.trace_id != "0af7651916cd43dd8448eb211c80319c"

    def test_5xx_marks_span_errored_with_reported_errors(self):
        tracer = LocalTracer()
        client = TestClient(_make_app(MiddlewarePipeline(tracer=tracer)))

        assert client.get("/unavailable").status_code == 503

        span = tracer.finished_spans()[0]
        assert span.status == "ERROR"
        assert span.status_message == "db timeout"
        assert span.attributes["error"] is True
        assert [e["attributes"]["error.message"] for e in span.events] == ["db timeout"]

    def test_exception_recorded_on_span(self):
        tracer = LocalTracer()
        client = TestClient(_make_app(MiddlewarePipeline(tracer=tracer)))

        assert client.get("/boom").status_code == 500

        span = tracer.finished_spans()[0]
        assert span.status == "ERROR"
        assert span.status_message == "kaboom"

    def test_4xx_is_not_an_error(self):
        tracer = LocalTracer()
        client = TestClient(_make_app(MiddlewarePipeline(tracer=tracer)))
        client.get("/items/not-a-number")
        span = tracer.finished_spans()[0]
        assert span.attributes["http.status_code"] == 422
        assert span.status == "OK"

    def test_probes_not_traced(self):
        tracer = LocalTracer()
        client = TestClient(_make_app(MiddlewarePipeline(skipper=new_skipper(), tracer=tracer)))
        response = client.get("/healthz")
        assert tracer.finished_spans() == []
        assert "x-trace-id" not in response.headers

    def test_broken_tracer_never_fails_request(self):
        tracer = MagicMock()
        tracer.extract.side_effect = RuntimeError("bad carrier")
        tracer.start_span.side_effect = RuntimeError("exporter down")

        client = TestClient(_make_app(MiddlewarePipeline(tracer=tracer)))
        response = client.get("/items/2")
        assert response.status_code == 200
