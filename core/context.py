# ============================================================================
# REQUEST CONTEXT
# ============================================================================
# STATUS: Core - Per-request value bag
# PURPOSE: Request id, start time, rate limit and pending headers per request
# ============================================================================
"""
Request Context

One RequestContext is created per request and stored in the ASGI scope
state, where every middleware stage and the handler can reach it. Values
never leak across requests because the scope itself is request-local.

Usage:
    from core.context import get_request_context

    @router.get("/users")
    async def list_users(request: Request):
        ctx = get_request_context(request)
        rid = ctx.request_id if ctx else None
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, MutableMapping, Optional, Union

from starlette.requests import HTTPConnection

STATE_KEY = "request_context"

REQUEST_ID_HEADER = "X-Request-Id"


@dataclass
class RateLimitInfo:
    """Rate-limit values recorded during a request."""
    limit: int
    remaining: int
    reset: datetime


@dataclass
class RequestContext:
    """
    Request-scoped values shared by the middleware stages and the handler.

    Attributes:
        request_id: Correlation id (echoed or generated)
        start_time: perf_counter() value recorded by the meta stage; envelope
            meta is produced only when this is set
        server_version: Value for X-Server-Version and envelope meta
        rate_limit: Set by with_rate_limit; last call wins
        response_headers: Headers the envelope builders add to the response
        errors: Handler-reported error messages (attached to the server span)
    """
    request_id: Optional[str] = None
    start_time: Optional[float] = None
    server_version: Optional[str] = None
    rate_limit: Optional[RateLimitInfo] = None
    response_headers: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def mark_start(self) -> None:
        self.start_time = time.perf_counter()

    def elapsed_ms(self) -> Optional[int]:
        if self.start_time is None:
            return None
        return int((time.perf_counter() - self.start_time) * 1000)


def ensure_request_context(scope: MutableMapping[str, Any]) -> RequestContext:
    """Get the context stored in an ASGI scope, creating it on first use."""
    state = scope.setdefault("state", {})
    ctx = state.get(STATE_KEY)
    if ctx is None:
        ctx = RequestContext()
        state[STATE_KEY] = ctx
    return ctx


def get_request_context(request: HTTPConnection) -> Optional[RequestContext]:
    """Get the request's context, or None when no stage created one."""
    return request.scope.get("state", {}).get(STATE_KEY)


def get_request_id(request: HTTPConnection) -> Optional[str]:
    ctx = get_request_context(request)
    return ctx.request_id if ctx else None


def record_error(request: HTTPConnection, error: Union[str, BaseException]) -> None:
    """
    Report a handler error without raising.

    Recorded messages are attached to the server span when the response
    status is 5xx.
    """
    message = error if isinstance(error, str) else (str(error) or type(error).__name__)
    ensure_request_context(request.scope).errors.append(message)


__all__ = [
    "STATE_KEY",
    "REQUEST_ID_HEADER",
    "RateLimitInfo",
    "RequestContext",
    "ensure_request_context",
    "get_request_context",
    "get_request_id",
    "record_error",
]
