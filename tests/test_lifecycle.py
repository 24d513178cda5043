# ============================================================================
# SERVER LIFECYCLE TESTS
# ============================================================================
# STATUS: Tests - Startup, probes over a real socket, bounded shutdown
# PURPOSE: Verify ServerLifecycle state machine and the main wiring
# ============================================================================
"""
Server Lifecycle Tests

Runs uvicorn on an ephemeral localhost port inside asyncio.run and talks
to it with httpx.AsyncClient.

Run with:
    pytest tests/test_lifecycle.py -v
"""

import asyncio
import time
from contextlib import asynccontextmanager

import httpx
import pytest
from fastapi import FastAPI

from core.config import HttpConfig
from core.errors import LifecycleError, ServerStartError
from health import HealthRegistry, ProbeKind
from main import create_server
from middleware import MiddlewarePipeline, new_skipper
from server import LIVENESS_CHECK, ServerLifecycle, ServerState, bind_socket


def _lifecycle(app=None, registry=None, **overrides):
    config = HttpConfig(addr="127.0.0.1:0", **overrides)
    return ServerLifecycle(
        app if app is not None else FastAPI(),
        config=config,
        registry=registry if registry is not None else HealthRegistry(),
        pipeline=MiddlewarePipeline(skipper=new_skipper(config)),
    )


def _base_url(lifecycle):
    host, port = lifecycle.bound_address
    return f"http://{host}:{port}"


# ============================================================================
# STARTUP
# ============================================================================

class TestStartup:

    def test_start_serves_probes(self):
        async def scenario():
            lifecycle = _lifecycle()
            await lifecycle.start()
            state = lifecycle.state
            async with httpx.AsyncClient(base_url=_base_url(lifecycle)) as client:
                live = await client.get("/livez")
                ready = await client.get("/healthz")
            await lifecycle.stop()
            return state, live, ready

        state, live, ready = asyncio.run(scenario())
        assert state == ServerState.RUNNING
        assert live.status_code == 200
        assert live.json() == {"ok": True, "details": {LIVENESS_CHECK: "ok"}}
        assert ready.status_code == 200
        assert ready.json() == {"ok": True, "details": {}}

    def test_bind_failure_is_reported(self):
        async def scenario():
            blocker = bind_socket("127.0.0.1", 0)
            port = blocker.getsockname()[1]
            try:
                lifecycle = ServerLifecycle(FastAPI(), HttpConfig(addr=f"127.0.0.1:{port}"))
                with pytest.raises(ServerStartError):
                    await lifecycle.start()
                return lifecycle
            finally:
                blocker.close()

        lifecycle = asyncio.run(scenario())
        assert lifecycle.state == ServerState.CREATED
        assert lifecycle.registry.get(ProbeKind.LIVENESS, LIVENESS_CHECK) is None

    def test_startup_failure_releases_listener(self):
        @asynccontextmanager
        async def failing_lifespan(app):
            raise RuntimeError("startup failed")
            yield

        async def scenario():
            lifecycle = _lifecycle(FastAPI(lifespan=failing_lifespan))
            with pytest.raises(ServerStartError):
                await lifecycle.start()
            host, port = lifecycle.bound_address
            rebound = bind_socket(host, port)
            rebound.close()
            return lifecycle

        lifecycle = asyncio.run(scenario())
        assert lifecycle.state == ServerState.STOPPED
        assert not lifecycle.registry.get(ProbeKind.LIVENESS, LIVENESS_CHECK).healthy

    def test_start_twice_is_rejected(self):
        async def scenario():
            lifecycle = _lifecycle()
            await lifecycle.start()
            try:
                with pytest.raises(LifecycleError):
                    await lifecycle.start()
            finally:
                await lifecycle.stop()

        asyncio.run(scenario())


# ============================================================================
# SHUTDOWN
# ============================================================================

class TestShutdown:

    def test_stop_is_idempotent(self):
        async def scenario():
            lifecycle = _lifecycle()
            await lifecycle.start()
            await lifecycle.stop()
            await lifecycle.stop()
            return lifecycle

        lifecycle = asyncio.run(scenario())
        assert lifecycle.state == ServerState.STOPPED
        assert not lifecycle.registry.get(ProbeKind.LIVENESS, LIVENESS_CHECK).healthy

    def test_stop_before_start(self):
        lifecycle = _lifecycle()
        asyncio.run(lifecycle.stop())
        assert lifecycle.state == ServerState.STOPPED

    def test_in_flight_request_cut_off_after_grace(self):
        finished = []

        async def scenario():
            entered = asyncio.Event()
            app = FastAPI()

            @app.get("/slow")
            async def slow():
                entered.set()
                await asyncio.sleep(30)
                finished.append(True)
                return {"done": True}

            lifecycle = _lifecycle(app)
            await lifecycle.start()
            async with httpx.AsyncClient(base_url=_base_url(lifecycle), timeout=10) as client:
                request = asyncio.create_task(client.get("/slow"))
                await asyncio.wait_for(entered.wait(), timeout=5)

                started = time.monotonic()
                await lifecycle.stop(grace=0.2)
                elapsed = time.monotonic() - started

                outcome = (await asyncio.gather(request, return_exceptions=True))[0]
            return lifecycle, elapsed, outcome

        lifecycle, elapsed, outcome = asyncio.run(scenario())
        assert lifecycle.state == ServerState.STOPPED
        assert elapsed < 3.0
        assert finished == []
        if isinstance(outcome, httpx.Response):
            assert outcome.status_code >= 500
        else:
            assert isinstance(outcome, Exception)

    def test_completed_requests_drain_normally(self):
        async def scenario():
            entered = asyncio.Event()
            app = FastAPI()

            @app.get("/quick")
            async def quick():
                entered.set()
                await asyncio.sleep(0.2)
                return {"done": True}

            lifecycle = _lifecycle(app)
            await lifecycle.start()
            async with httpx.AsyncClient(base_url=_base_url(lifecycle), timeout=10) as client:
                request = asyncio.create_task(client.get("/quick"))
                await asyncio.wait_for(entered.wait(), timeout=5)
                await lifecycle.stop(grace=2)
                return await request

        response = asyncio.run(scenario())
        assert response.status_code == 200
        assert response.json() == {"done": True}


# ============================================================================
# MAIN WIRING
# ============================================================================

class TestCreateServer:

    def test_root_envelope_and_info(self):
        async def scenario():
            lifecycle = create_server(HttpConfig(addr="127.0.0.1:0", server_version="7.0.0"))
            await lifecycle.start()
            async with httpx.AsyncClient(base_url=_base_url(lifecycle)) as client:
                root = await client.get("/", headers={"X-Request-Id": "main-1"})
                info = await client.get("/actuator/info")
            await lifecycle.stop()
            return root, info

        root, info = asyncio.run(scenario())
        assert root.status_code == 200
        body = root.json()
        assert body["ok"] is True
        assert body["data"]["status"] == "running"
        assert body["meta"]["request_id"] == "main-1"
        assert body["meta"]["server"] == "7.0.0"
        assert root.headers["x-server-version"] == "7.0.0"
        assert root.headers["x-request-id"] == "main-1"
        assert len(root.headers.get_list("date")) == 1

        assert info.status_code == 200
        assert set(info.json()) == {"version", "commit", "builtAt"}

    def test_recovered_500_has_date_and_version(self):
        async def scenario():
            app = FastAPI()

            @app.get("/boom")
            async def boom():
                raise RuntimeError("kaboom")

            lifecycle = create_server(HttpConfig(addr="127.0.0.1:0", server_version="7.0.0"), app=app)
            await lifecycle.start()
            async with httpx.AsyncClient(base_url=_base_url(lifecycle)) as client:
                response = await client.get("/boom")
            await lifecycle.stop()
            return response

        response = asyncio.run(scenario())
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "internal_error"
        assert len(response.headers.get_list("date")) == 1
        assert response.headers["x-server-version"] == "7.0.0"
