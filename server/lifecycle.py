# ============================================================================
# SERVER LIFECYCLE
# ============================================================================
# STATUS: Server - Listener startup and graceful shutdown
# PURPOSE: Created -> Starting -> Running -> Stopping -> Stopped
# ============================================================================
"""
Server Lifecycle

Owns the uvicorn server for one application:

    lifecycle = ServerLifecycle(app, config, registry, pipeline=pipeline)
    await lifecycle.start()    # bind (raises ServerStartError), serve in background
    ...
    await lifecycle.stop()     # drain within the grace window, then force

Startup binds the socket synchronously, so an address in use fails
``start()`` itself. Failures after that (the serve loop dying) are logged
only; external supervision notices them through the liveness probe.

Shutdown is idempotent and always returns: in-flight requests get the
grace window (``config.shutdown_timeout``) and are cancelled after it.
"""

import asyncio
import signal
import socket
from enum import Enum
from typing import Optional, Tuple

import uvicorn
from fastapi import FastAPI

from core.config import HttpConfig
from core.errors import LifecycleError, ServerStartError
from core.logging import ComponentType, get_logger
from health import BuildInfo, HealthRegistry, ProbeKind, build_probe_router
from middleware.pipeline import MiddlewarePipeline

logger = get_logger(__name__, ComponentType.SERVER)

LIVENESS_CHECK = "http.server"

# Extra time past the grace window for uvicorn's own shutdown steps
SHUTDOWN_MARGIN_SECONDS = 1.0
STARTUP_POLL_SECONDS = 0.01


class ServerState(str, Enum):
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


def bind_socket(host: str, port: int) -> socket.socket:
    """
    Bind a listening TCP socket.

    Raises:
        OSError: if the address cannot be bound
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(2048)
    except OSError:
        sock.close()
        raise
    sock.setblocking(False)
    return sock


class ServerLifecycle:
    """
    HTTP server lifecycle.

    The health registry is owned here and marked live once the listener is
    bound; the probe router and the middleware pipeline are installed on
    the app at start.
    """

    def __init__(
        self,
        app: FastAPI,
        config: Optional[HttpConfig] = None,
        registry: Optional[HealthRegistry] = None,
        pipeline: Optional[MiddlewarePipeline] = None,
        build_info: Optional[BuildInfo] = None,
    ):
        self.app = app
        self.config = config or HttpConfig()
        self.registry = registry if registry is not None else HealthRegistry()
        self.pipeline = pipeline
        self.build_info = build_info

        self._state = ServerState.CREATED
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._socket: Optional[socket.socket] = None
        self._address: Optional[Tuple[str, int]] = None
        self._installed = False
        self._stop_lock = asyncio.Lock()

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def bound_address(self) -> Optional[Tuple[str, int]]:
        """Actual (host, port) of the listener; resolves port 0."""
        return self._address

    def _install(self) -> None:
        if self._installed:
            return
        self.app.include_router(build_probe_router(self.registry, self.config, self.build_info))
        if self.pipeline is not None:
            self.pipeline.install(self.app)
        self._installed = True

    async def start(self) -> None:
        """
        Bind the listener and start serving in the background.

        Raises:
            LifecycleError: if the server was already started
            ServerStartError: if the listener cannot be bound or the server
                fails before it is up
        """
        if self._state != ServerState.CREATED:
            raise LifecycleError(f"Cannot start server in state {self._state.value}")
        self._state = ServerState.STARTING

        host, port = self.config.bind_address()
        try:
            self._socket = bind_socket(host, port)
        except OSError as e:
            self._state = ServerState.CREATED
            raise ServerStartError(self.config.addr, e) from e
        self._address = tuple(self._socket.getsockname()[:2])

        self._install()
        uv_config = uvicorn.Config(
            self.app,
            log_config=None,
            access_log=False,
            lifespan="on",
            server_header=False,
            date_header=not (self.pipeline is not None and self.pipeline.with_meta),
            timeout_graceful_shutdown=self.config.shutdown_timeout,
        )
        self._server = uvicorn.Server(uv_config)

        self.registry.set(ProbeKind.LIVENESS, LIVENESS_CHECK, None)

        logger.info(f"http: starting server on {self.config.addr}", extra=self.config.summary())
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[self._socket]))
        self._serve_task.add_done_callback(self._on_serve_done)

        while not self._server.started:
            if self._serve_task.done():
                self._state = ServerState.STOPPED
                self._socket.close()
                self.registry.set(ProbeKind.LIVENESS, LIVENESS_CHECK, "server failed to start")
                raise ServerStartError(self.config.addr, RuntimeError("server exited during startup"))
            await asyncio.sleep(STARTUP_POLL_SECONDS)

        self._state = ServerState.RUNNING
        logger.info(f"http: server running on {self.bound_address}")

    def _on_serve_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"http: server error: {exc}", exc_info=exc)
            self.registry.set(ProbeKind.LIVENESS, LIVENESS_CHECK, exc)
        elif self._state == ServerState.RUNNING:
            logger.warning("http: server exited while running")
            self.registry.set(ProbeKind.LIVENESS, LIVENESS_CHECK, "server exited")

    async def stop(self, grace: Optional[float] = None) -> None:
        """
        Stop accepting connections and drain in-flight requests.

        Requests still running after ``grace`` seconds (default
        ``config.shutdown_timeout``) are cancelled. Safe to call any number
        of times; returns within the grace window plus a small margin.
        """
        async with self._stop_lock:
            if self._state in (ServerState.STOPPING, ServerState.STOPPED):
                return
            if self._state == ServerState.CREATED:
                self._state = ServerState.STOPPED
                return

            self._state = ServerState.STOPPING
            grace = self.config.shutdown_timeout if grace is None else grace
            logger.info(f"http: shutting down server (grace {grace}s)")
            self.registry.set(ProbeKind.LIVENESS, LIVENESS_CHECK, "server stopping")

            server, task = self._server, self._serve_task
            server.config.timeout_graceful_shutdown = grace
            server.should_exit = True
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=grace + SHUTDOWN_MARGIN_SECONDS)
            except asyncio.TimeoutError:
                logger.error("http: graceful shutdown exceeded, forcing exit")
                self._force_close(server, task)
            except Exception as e:
                logger.error(f"http: server error during shutdown: {e}")

            if self._socket is not None:
                self._socket.close()
            self._state = ServerState.STOPPED
            logger.info("http: server stopped")

    def _force_close(self, server: uvicorn.Server, task: asyncio.Task) -> None:
        server.force_exit = True
        for request_task in list(server.server_state.tasks):
            request_task.cancel()
        for connection in list(server.server_state.connections):
            transport = getattr(connection, "transport", None)
            if transport is not None:
                transport.close()
        task.cancel()

    async def run(self) -> None:
        """Start, serve until SIGINT/SIGTERM, then stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                pass

        waiter = asyncio.create_task(stop_event.wait())
        await asyncio.wait({waiter, self._serve_task}, return_when=asyncio.FIRST_COMPLETED)
        waiter.cancel()
        await self.stop()


__all__ = [
    "LIVENESS_CHECK",
    "ServerState",
    "ServerLifecycle",
    "bind_socket",
]
