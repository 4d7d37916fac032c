"""Keyset pagination helpers shared by list endpoints.

Cursors are opaque to clients: base64url (unpadded) JSON naming the last
row of the previous page.
"""

import base64
import json
from datetime import datetime
from uuid import UUID

from conecta.errors import ApiErrorCode, InvalidRequestError

DEFAULT_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 100


def clamp_limit(limit: int) -> int:
    """Clamp limit to valid range [MIN_LIMIT, MAX_LIMIT]."""
    return min(max(limit, MIN_LIMIT), MAX_LIMIT)


def _encode(payload: dict) -> str:
    json_bytes = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(json_bytes).decode("ascii").rstrip("=")


def _decode(cursor: str) -> dict:
    padding = -len(cursor) % 4
    json_bytes = base64.urlsafe_b64decode(cursor + "=" * padding)
    payload = json.loads(json_bytes.decode("utf-8"))
    if not isinstance(payload, dict):
        raise ValueError("cursor payload must be an object")
    return payload


def encode_seq_cursor(seq: int, id: UUID) -> str:
    """Cursor for ascending (seq, id) pages."""
    return _encode({"seq": seq, "id": str(id)})


def decode_seq_cursor(cursor: str) -> tuple[int, UUID]:
    """Decode a (seq, id) cursor.

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed.
    """
    try:
        payload = _decode(cursor)
        seq = int(payload["seq"])
        id = UUID(payload["id"])
    except (ValueError, KeyError, TypeError, UnicodeDecodeError):
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Invalid cursor") from None
    if seq < 1:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Invalid cursor")
    return seq, id


def encode_created_cursor(created_at: datetime, id: UUID) -> str:
    """Cursor for descending (created_at, id) pages."""
    return _encode({"created_at": created_at.isoformat(), "id": str(id)})


def decode_created_cursor(cursor: str) -> tuple[datetime, UUID]:
    """Decode a (created_at, id) cursor.

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed.
    """
    try:
        payload = _decode(cursor)
        created_at = datetime.fromisoformat(payload["created_at"])
        id = UUID(payload["id"])
    except (ValueError, KeyError, TypeError, UnicodeDecodeError):
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Invalid cursor") from None
    return created_at, id
