# ============================================================================
# RESPONSE ENVELOPE
# ============================================================================
# STATUS: Responses - Envelope builders
# PURPOSE: OK / Created / Error responses with automatic meta
# ============================================================================
"""
Response Envelope

Builders that wrap handler results in the uniform envelope:

    @router.get("/users")
    async def list_users(request: Request, cursor: str = ""):
        offset, limit = decode_cursor(cursor)
        users, total = await repo.list(offset, limit or 50)
        return ok(request, users, paginate(total, offset, limit or 50))

Meta is attached only when the meta stage recorded a start time for the
request; otherwise the ``meta`` field is absent. Headers recorded earlier
in the request (rate limit, ETag) are applied to the response.
"""

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from starlette.requests import HTTPConnection
from starlette.responses import JSONResponse

from core.context import (
    REQUEST_ID_HEADER,
    RateLimitInfo,
    RequestContext,
    ensure_request_context,
    get_request_context,
)
from responses.models import APIError, Envelope, ErrDetail, Meta, Pagination, RateLimit

DetailLike = Union[ErrDetail, Mapping[str, Any]]


class EnvelopeResponse(JSONResponse):
    """
    JSON response that leaves string content unescaped.

    ``<``, ``>``, ``&`` and non-ASCII characters are written literally.
    """

    def render(self, content: Any) -> bytes:
        if isinstance(content, Envelope):
            content = content.to_dict()
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            separators=(",", ":"),
        ).encode("utf-8")


def build_meta(ctx: Optional[RequestContext]) -> Optional[Meta]:
    """Meta for the current request, or None when no start time was recorded."""
    if ctx is None or ctx.start_time is None:
        return None
    meta = Meta(
        request_id=ctx.request_id or None,
        timestamp=datetime.now(timezone.utc),
        duration_ms=ctx.elapsed_ms(),
        server=ctx.server_version or None,
    )
    if ctx.rate_limit is not None:
        meta.rate_limit = RateLimit(
            limit=ctx.rate_limit.limit,
            remaining=ctx.rate_limit.remaining,
            reset=ctx.rate_limit.reset,
        )
    return meta


def send_envelope(
    ctx: Optional[RequestContext],
    status_code: int,
    ok: bool,
    data: Any = None,
    error: Optional[APIError] = None,
    pagination: Optional[Pagination] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> EnvelopeResponse:
    """Assemble the envelope, its meta and its headers into a response."""
    envelope = Envelope(
        ok=ok,
        data=data,
        error=error,
        pagination=pagination,
        meta=build_meta(ctx),
    )
    response_headers = dict(ctx.response_headers) if ctx else {}
    response_headers.update(headers or {})
    return EnvelopeResponse(
        content=envelope,
        status_code=status_code,
        headers=response_headers,
        media_type="application/json; charset=utf-8",
    )


def ok(request: HTTPConnection, data: Any, pagination: Optional[Pagination] = None) -> EnvelopeResponse:
    """200 with ``ok=true`` and the payload."""
    return send_envelope(get_request_context(request), 200, True, data=data, pagination=pagination)


def created(request: HTTPConnection, location: str, data: Any) -> EnvelopeResponse:
    """201 with a Location header pointing at the new resource."""
    headers = {"Location": location} if location else None
    return send_envelope(get_request_context(request), 201, True, data=data, headers=headers)


def _details(details: Optional[Iterable[DetailLike]]) -> list:
    out = []
    for item in details or ():
        out.append(item if isinstance(item, ErrDetail) else ErrDetail(**item))
    return out


def error(
    request: Optional[HTTPConnection],
    status_code: int,
    code: str,
    message: str,
    details: Optional[Sequence[DetailLike]] = None,
) -> EnvelopeResponse:
    """Error envelope with the caller's status code."""
    ctx = get_request_context(request) if request is not None else None
    return error_response(ctx, status_code, code, message, details)


def error_response(
    ctx: Optional[RequestContext],
    status_code: int,
    code: str,
    message: str,
    details: Optional[Sequence[DetailLike]] = None,
) -> EnvelopeResponse:
    """Error envelope built from a request context (used where no Request exists)."""
    api_error = APIError(code=code, message=message, details=_details(details))
    headers = {REQUEST_ID_HEADER: ctx.request_id} if ctx and ctx.request_id else None
    return send_envelope(ctx, status_code, False, error=api_error, headers=headers)


def with_rate_limit(
    request: HTTPConnection,
    limit: int,
    remaining: int,
    reset: datetime,
) -> RateLimit:
    """
    Record rate-limit values for this request.

    Sets the X-RateLimit-* headers on the envelope response and the
    ``meta.rate_limit`` field. A second call in the same request replaces
    the first.
    """
    ctx = ensure_request_context(request.scope)
    if reset.tzinfo is None:
        reset = reset.replace(tzinfo=timezone.utc)
    ctx.rate_limit = RateLimitInfo(limit=limit, remaining=remaining, reset=reset)
    ctx.response_headers["X-RateLimit-Limit"] = str(limit)
    ctx.response_headers["X-RateLimit-Remaining"] = str(remaining)
    ctx.response_headers["X-RateLimit-Reset"] = str(int(reset.timestamp()))
    return RateLimit(limit=limit, remaining=remaining, reset=reset)


def with_etag(request: HTTPConnection, etag: str) -> None:
    """Set the ETag header of the envelope response. Empty tags are ignored."""
    if not etag:
        return
    ensure_request_context(request.scope).response_headers["ETag"] = etag


__all__ = [
    "EnvelopeResponse",
    "build_meta",
    "send_envelope",
    "ok",
    "created",
    "error",
    "error_response",
    "with_rate_limit",
    "with_etag",
]
