# ============================================================================
# PAGINATION CURSORS
# ============================================================================
# STATUS: Responses - Cursor codec
# PURPOSE: Opaque offset/limit cursors and page metadata
# ============================================================================
"""
Pagination Cursors

A cursor is the compact JSON ``{"offset": o, "limit": l}`` (zero fields
omitted) encoded as unpadded URL-safe base64.

    decode_cursor(encode_cursor(o, l)) == (o, l)

always holds. The reverse direction is not guaranteed: a client-built
cursor with reordered or extra fields decodes fine but re-encodes
differently.
"""

import base64
import binascii
import json
import re
from datetime import datetime, timedelta, timezone
from typing import Tuple

from core.errors import CursorDecodeError
from responses.models import Pagination

_CURSOR_ALPHABET = re.compile(r"^[A-Za-z0-9_-]+$")


def encode_cursor(offset: int, limit: int) -> str:
    """
    Encode an offset/limit pair as an opaque cursor.

    Raises:
        ValueError: for negative values
    """
    if offset < 0 or limit < 0:
        raise ValueError(f"Cursor values must be non-negative (offset={offset}, limit={limit})")
    payload = {}
    if offset:
        payload["offset"] = int(offset)
    if limit:
        payload["limit"] = int(limit)
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_cursor(cursor: str) -> Tuple[int, int]:
    """
    Decode a cursor into (offset, limit).

    An empty cursor is the first page, ``(0, 0)``.

    Raises:
        CursorDecodeError: if the cursor is not unpadded URL-safe base64 of
            a JSON object with non-negative integer offset/limit
    """
    if cursor == "":
        return 0, 0
    if not isinstance(cursor, str) or not _CURSOR_ALPHABET.match(cursor):
        raise CursorDecodeError(str(cursor), "not URL-safe base64")
    try:
        raw = base64.urlsafe_b64decode(cursor + "=" * (-len(cursor) % 4))
    except (binascii.Error, ValueError) as e:
        raise CursorDecodeError(cursor, f"bad base64: {e}") from e
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CursorDecodeError(cursor, "payload is not JSON") from e
    if not isinstance(payload, dict):
        raise CursorDecodeError(cursor, "payload is not an object")

    values = []
    for key in ("offset", "limit"):
        value = payload.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise CursorDecodeError(cursor, f"{key} must be a non-negative integer")
        values.append(value)
    return values[0], values[1]


def paginate(total: int, offset: int, limit: int) -> Pagination:
    """
    Build pagination metadata for one page of an offset/limit listing.

    ``next`` is omitted on the last page and ``prev`` on the first.
    """
    if limit <= 0:
        raise ValueError(f"limit must be positive, got {limit}")
    if offset < 0:
        raise ValueError(f"offset must be non-negative, got {offset}")

    page = Pagination(
        total=total,
        limit=limit,
        offset=offset,
        cursor=encode_cursor(offset, limit),
    )
    if offset + limit < total:
        page.next = encode_cursor(offset + limit, limit)
    if offset > 0:
        page.prev = encode_cursor(max(offset - limit, 0), limit)
    return page


def cursor_reset_time(seconds: float) -> datetime:
    """A UTC time ``seconds`` from now, for rate-limit reset values."""
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


__all__ = [
    "encode_cursor",
    "decode_cursor",
    "paginate",
    "cursor_reset_time",
]
