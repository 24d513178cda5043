# ============================================================================
# MIDDLEWARE HELPERS
# ============================================================================
# STATUS: Middleware - Shared ASGI plumbing
# PURPOSE: Response observation and guarded collaborator calls
# ============================================================================
"""
Shared helpers for the pure-ASGI middleware stages.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from starlette.types import Message, Scope, Send

logger = logging.getLogger(__name__)

UNMATCHED_ROUTE = "unmatched"


@dataclass
class ResponseInfo:
    """What a stage saw of the response it forwarded."""
    status_code: int = 500
    started: bool = False
    body_size: int = 0


def observe_send(send: Send, info: ResponseInfo) -> Send:
    """Wrap ``send`` so status and body size are recorded into ``info``."""

    async def observed(message: Message) -> None:
        if message["type"] == "http.response.start":
            info.started = True
            info.status_code = message["status"]
        elif message["type"] == "http.response.body":
            info.body_size += len(message.get("body", b""))
        await send(message)

    return observed


def route_template(scope: Scope) -> str:
    """Path template of the matched route, or "unmatched" (keeps label cardinality bounded)."""
    route = scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


def guarded(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[Any]:
    """
    Call an optional-collaborator function, logging instead of raising.

    Metrics and tracing failures must never change the outcome of a request.
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        logger.debug(f"Instrumentation call {getattr(func, '__name__', func)} failed: {e}", exc_info=True)
        return None


__all__ = [
    "UNMATCHED_ROUTE",
    "ResponseInfo",
    "observe_send",
    "route_template",
    "guarded",
]
