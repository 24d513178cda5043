# ============================================================================
# RESPONSE ENVELOPE MODELS
# ============================================================================
# STATUS: Responses - Wire models
# PURPOSE: Pydantic models for the uniform API response body
# ============================================================================
"""
Response Envelope Models

Every API response body has the same shape:

    {
        "ok": true,
        "data": {...},                  # ok responses
        "error": {"code", "message", "details"},   # error responses
        "pagination": {...},            # optional
        "meta": {"request_id", "timestamp", "duration_ms", "server", "rate_limit"}
    }

Absent fields are omitted from the JSON, never sent as null.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, model_validator


class ErrDetail(BaseModel):
    """Additional context about an error (usually one invalid field)."""
    field: Optional[str] = None
    message: Optional[str] = None


class APIError(BaseModel):
    """Error carried by a failed response."""
    code: str
    message: str
    details: List[ErrDetail] = Field(default_factory=list)


class Pagination(BaseModel):
    """
    Pagination metadata.

    cursor/next/prev are opaque strings from encode_cursor; clients must
    not parse them.
    """
    total: Optional[int] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    cursor: Optional[str] = None
    next: Optional[str] = None
    prev: Optional[str] = None


class RateLimit(BaseModel):
    """Rate-limit metadata."""
    limit: int
    remaining: int
    reset: datetime


class Meta(BaseModel):
    """Request/response metadata."""
    request_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    duration_ms: Optional[int] = None
    server: Optional[str] = None
    rate_limit: Optional[RateLimit] = None


class Envelope(BaseModel):
    """
    Uniform response wrapper.

    Exactly one of data/error applies: ok responses never carry an error
    and failed responses never carry data.
    """
    ok: bool
    data: Any = None
    error: Optional[APIError] = None
    pagination: Optional[Pagination] = None
    meta: Optional[Meta] = None

    @model_validator(mode="after")
    def _check_outcome(self) -> "Envelope":
        if self.ok and self.error is not None:
            raise ValueError("ok envelope cannot carry an error")
        if not self.ok and (self.error is None or self.data is not None):
            raise ValueError("error envelope requires an error and no data")
        return self

    def to_dict(self) -> Dict[str, Any]:
        """
        JSON-ready dict.

        None fields of the envelope and its metadata are dropped; ``data``
        is encoded as-is so null values inside the payload survive.
        """
        body: Dict[str, Any] = {"ok": self.ok}
        if self.data is not None:
            body["data"] = jsonable_encoder(self.data)
        if self.error is not None:
            error = self.error.model_dump(mode="json", exclude_none=True)
            if not error.get("details"):
                error.pop("details", None)
            body["error"] = error
        if self.pagination is not None:
            body["pagination"] = self.pagination.model_dump(mode="json", exclude_none=True)
        if self.meta is not None:
            body["meta"] = self.meta.model_dump(mode="json", exclude_none=True)
        return body


__all__ = [
    "ErrDetail",
    "APIError",
    "Pagination",
    "RateLimit",
    "Meta",
    "Envelope",
]
