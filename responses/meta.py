# ============================================================================
# META MIDDLEWARE
# ============================================================================
# STATUS: Responses - Response metadata headers
# PURPOSE: Date / X-Request-Id / traceparent / X-Server-Version + start time
# ============================================================================
"""
Meta Middleware

Records the request start time (which switches on envelope ``meta``) and
sets the standard metadata headers on every response:

    Date              RFC 1123, GMT
    X-Request-Id      the request id (echoed or generated)
    traceparent       echoed from the request unless a tracer already set one
    X-Server-Version  when a server version is configured
"""

import uuid
from email.utils import formatdate
from typing import Optional

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.context import REQUEST_ID_HEADER, ensure_request_context


class MetaMiddleware:
    """Pure ASGI middleware; passes non-HTTP scopes through untouched."""

    def __init__(self, app: ASGIApp, server_version: Optional[str] = None):
        self.app = app
        self.server_version = server_version or None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_headers = Headers(scope=scope)
        ctx = ensure_request_context(scope)
        if not ctx.request_id:
            ctx.request_id = request_headers.get(REQUEST_ID_HEADER, "").strip() or str(uuid.uuid4())
        if self.server_version:
            ctx.server_version = self.server_version
        traceparent = request_headers.get("traceparent")
        ctx.mark_start()

        async def send_with_meta(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers["Date"] = formatdate(usegmt=True)
                headers[REQUEST_ID_HEADER] = ctx.request_id
                if traceparent and "traceparent" not in headers:
                    headers["traceparent"] = traceparent
                if self.server_version:
                    headers["X-Server-Version"] = self.server_version
            await send(message)

        await self.app(scope, receive, send_with_meta)


__all__ = ["MetaMiddleware"]
