# ============================================================================
# RESPONSES MODULE
# ============================================================================
# STATUS: Responses - Uniform API response envelope
# PURPOSE: Envelope builders, wire models, cursors and meta middleware
# ============================================================================
"""
Responses Module

Every API response body is an envelope:
- ok / created / error: envelope builders for handlers
- encode_cursor / decode_cursor / paginate: opaque pagination cursors
- MetaMiddleware: metadata headers and envelope meta

Usage:
    from responses import ok, error, paginate

    return ok(request, items, paginate(total, offset, limit))
    return error(request, 422, "bad_input", "invalid field",
                 [{"field": "name", "message": "required"}])
"""

from responses.models import (
    APIError,
    Envelope,
    ErrDetail,
    Meta,
    Pagination,
    RateLimit,
)
from responses.pagination import (
    cursor_reset_time,
    decode_cursor,
    encode_cursor,
    paginate,
)
from responses.envelope import (
    EnvelopeResponse,
    created,
    error,
    error_response,
    ok,
    with_etag,
    with_rate_limit,
)
from responses.meta import MetaMiddleware

__all__ = [
    # Models
    "APIError",
    "Envelope",
    "ErrDetail",
    "Meta",
    "Pagination",
    "RateLimit",
    # Cursors
    "cursor_reset_time",
    "decode_cursor",
    "encode_cursor",
    "paginate",
    # Builders
    "EnvelopeResponse",
    "created",
    "error",
    "error_response",
    "ok",
    "with_etag",
    "with_rate_limit",
    # Middleware
    "MetaMiddleware",
]
