# ============================================================================
# CORE MIDDLEWARE
# ============================================================================
# STATUS: Middleware - Recovery, request id, access logging
# PURPOSE: The always-installed stages of the request pipeline
# ============================================================================
"""
Core Middleware

Pure ASGI middleware (non-HTTP scopes pass straight through):

- RecoveryMiddleware: outermost; turns any exception into a 500 envelope
- RequestIDMiddleware: echoes or generates X-Request-Id
- LoggingMiddleware: one "http" access log line per request, unless the
  skipper matches the request
"""

import time
import uuid
from email.utils import formatdate
from typing import Optional

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.context import REQUEST_ID_HEADER, ensure_request_context
from core.logging import ComponentType, ContextLogger, get_logger, log_context
from middleware.base import ResponseInfo, observe_send
from middleware.skipper import SkipSet
from responses.envelope import error_response

INTERNAL_ERROR_CODE = "internal_error"


def _default_logger() -> ContextLogger:
    return get_logger("http", ComponentType.HTTP)


class RecoveryMiddleware:
    """
    Converts unhandled exceptions into a 500 error envelope.

    The failure is logged with the request id. If the response had already
    started there is nothing left to convert; the failure is logged and
    re-raised so the server drops the connection.
    """

    def __init__(self, app: ASGIApp, logger: Optional[ContextLogger] = None):
        self.app = app
        self.logger = logger or _default_logger()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        ctx = ensure_request_context(scope)
        info = ResponseInfo()
        try:
            await self.app(scope, receive, observe_send(send, info))
        except Exception as exc:
            self.logger.error(
                "http panic recovered",
                exc_info=True,
                extra={
                    "rid": ctx.request_id,
                    "method": scope.get("method"),
                    "path": scope.get("path"),
                    "error": str(exc) or type(exc).__name__,
                },
            )
            if info.started:
                raise
            response = error_response(ctx, 500, INTERNAL_ERROR_CODE, "internal server error")
            if ctx.start_time is not None:
                # The meta stage ran inside this one; its headers are lost with the failed response.
                response.headers["Date"] = formatdate(usegmt=True)
                if ctx.server_version:
                    response.headers["X-Server-Version"] = ctx.server_version
            await response(scope, receive, send)


class RequestIDMiddleware:
    """
    Assigns the request correlation id.

    An incoming X-Request-Id is echoed; otherwise a UUID4 is generated. The
    id is stored in the request context and the logging context and set on
    the response.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get(REQUEST_ID_HEADER, "").strip() or str(uuid.uuid4())
        ensure_request_context(scope).request_id = request_id

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        with log_context(request_id=request_id):
            await self.app(scope, receive, send_with_id)


class LoggingMiddleware:
    """
    Structured access logging.

    Requests matched by the skipper are forwarded without any logging;
    skipping never changes routing.
    """

    def __init__(
        self,
        app: ASGIApp,
        logger: Optional[ContextLogger] = None,
        skipper: Optional[SkipSet] = None,
    ):
        self.app = app
        self.logger = logger or _default_logger()
        self.skipper = skipper

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method, path = scope["method"], scope["path"]
        if self.skipper is not None and self.skipper.matches(method, path):
            await self.app(scope, receive, send)
            return

        info = ResponseInfo()
        start = time.perf_counter()
        try:
            await self.app(scope, receive, observe_send(send, info))
        finally:
            self.logger.info(
                "http",
                extra={
                    "rid": ensure_request_context(scope).request_id,
                    "method": method,
                    "path": path,
                    "status": info.status_code,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 3),
                },
            )


__all__ = [
    "INTERNAL_ERROR_CODE",
    "RecoveryMiddleware",
    "RequestIDMiddleware",
    "LoggingMiddleware",
]
