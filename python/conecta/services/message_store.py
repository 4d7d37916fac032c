"""Direct message persistence.

Messages live in channels: one message_channels row per unordered user pair
and context. The channel row carries the next_seq counter, so the order of
a channel is the order in which appends acquired its row lock.

Functions here never open or commit transactions; the caller owns the
transaction and therefore how long the channel lock is held.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from conecta.config import get_settings
from conecta.db.models import ContextType, MessageType
from conecta.errors import ApiErrorCode, ForbiddenError, InvalidRequestError, NotFoundError
from conecta.schemas.common import PageInfo
from conecta.schemas.message import MAX_CONTEXT_ID_LENGTH, MessageOut
from conecta.services.pagination import (
    DEFAULT_LIMIT,
    clamp_limit,
    decode_seq_cursor,
    encode_seq_cursor,
)
from conecta.services.seq import assign_next_channel_seq

CONTEXT_TYPES = frozenset(c.value for c in ContextType)
MESSAGE_TYPES = frozenset(t.value for t in MessageType)

_COLUMNS = """
    id, channel_id, seq, sender_id, recipient_id, content, message_type,
    context_type, context_id, created_at, read_at
"""


def _row_to_out(row) -> MessageOut:
    return MessageOut(**row._mapping)


def normalize_context_id(context_id: str | None) -> str | None:
    """Blank context ids mean "no context id"."""
    if context_id is None or not context_id.strip():
        return None
    return context_id


def channel_key(
    user_a: UUID, user_b: UUID, context_type: str, context_id: str | None
) -> tuple[UUID, UUID, str, str]:
    """Canonical (low, high, context_type, context_key) for a channel.

    UUID ordering in Python matches PostgreSQL's byte ordering.
    """
    low, high = sorted((user_a, user_b))
    return low, high, context_type, normalize_context_id(context_id) or ""


def validate_context(context_type: str, context_id: str | None) -> None:
    """Raises InvalidRequestError(E_VALIDATION_FAILED) for an unknown context."""
    if context_type not in CONTEXT_TYPES:
        raise InvalidRequestError(
            ApiErrorCode.E_VALIDATION_FAILED, f"Unknown context type {context_type!r}"
        )
    if context_id is not None and len(context_id) > MAX_CONTEXT_ID_LENGTH:
        raise InvalidRequestError(ApiErrorCode.E_VALIDATION_FAILED, "Context id is too long")
    if context_id is not None and "\x00" in context_id:
        raise InvalidRequestError(
            ApiErrorCode.E_VALIDATION_FAILED, "Context id contains a NUL character"
        )


def validate_content(content: str) -> str:
    """Return content stripped of surrounding whitespace.

    Raises:
        InvalidRequestError(E_VALIDATION_FAILED): Blank, over the limit or
            containing a NUL character.
    """
    content = content.strip()
    if not content:
        raise InvalidRequestError(ApiErrorCode.E_VALIDATION_FAILED, "Message content is empty")
    if "\x00" in content:
        raise InvalidRequestError(
            ApiErrorCode.E_VALIDATION_FAILED, "Message content contains a NUL character"
        )

    max_chars = get_settings().max_message_chars
    if len(content) > max_chars:
        raise InvalidRequestError(
            ApiErrorCode.E_VALIDATION_FAILED,
            f"Message content exceeds {max_chars} characters",
        )
    return content


def _find_channel_id(
    db: Session, user_a: UUID, user_b: UUID, context_type: str, context_id: str | None
) -> UUID | None:
    low, high, context_type, context_key = channel_key(user_a, user_b, context_type, context_id)
    row = db.execute(
        text("""
            SELECT id FROM message_channels
            WHERE user_low_id = :low AND user_high_id = :high
              AND context_type = :context_type AND context_key = :context_key
        """),
        {"low": low, "high": high, "context_type": context_type, "context_key": context_key},
    ).fetchone()
    return row[0] if row else None


def _ensure_channel(
    db: Session, user_a: UUID, user_b: UUID, context_type: str, context_id: str | None
) -> UUID:
    low, high, context_type, context_key = channel_key(user_a, user_b, context_type, context_id)
    row = db.execute(
        text("""
            INSERT INTO message_channels (user_low_id, user_high_id, context_type, context_key)
            VALUES (:low, :high, :context_type, :context_key)
            ON CONFLICT (user_low_id, user_high_id, context_type, context_key) DO NOTHING
            RETURNING id
        """),
        {"low": low, "high": high, "context_type": context_type, "context_key": context_key},
    ).fetchone()
    if row is not None:
        return row[0]

    channel_id = _find_channel_id(db, user_a, user_b, context_type, context_id)
    if channel_id is None:
        raise RuntimeError("message channel vanished after insert conflict")
    return channel_id


def append_message(
    db: Session,
    sender_id: UUID,
    recipient_id: UUID,
    context_type: str,
    context_id: str | None,
    content: str,
    message_type: str = MessageType.text.value,
) -> MessageOut:
    """Append a message to the (sender, recipient, context) channel.

    The sequence number is assigned under the channel row lock, so appends to
    one channel are totally ordered and appends to different channels do not
    wait on each other.

    Raises:
        InvalidRequestError(E_SELF_REFERENCE): sender == recipient.
        InvalidRequestError(E_VALIDATION_FAILED): Bad content, context or type.
    """
    if sender_id == recipient_id:
        raise InvalidRequestError(ApiErrorCode.E_SELF_REFERENCE, "Cannot message yourself")

    content = validate_content(content)
    context_id = normalize_context_id(context_id)
    validate_context(context_type, context_id)
    if message_type not in MESSAGE_TYPES:
        raise InvalidRequestError(
            ApiErrorCode.E_VALIDATION_FAILED, f"Unknown message type {message_type!r}"
        )

    channel_id = _ensure_channel(db, sender_id, recipient_id, context_type, context_id)
    seq = assign_next_channel_seq(db, channel_id)

    row = db.execute(
        text(f"""
            INSERT INTO messages
                (channel_id, seq, sender_id, recipient_id, content, message_type,
                 context_type, context_id)
            VALUES
                (:channel_id, :seq, :sender_id, :recipient_id, :content, :message_type,
                 :context_type, :context_id)
            RETURNING {_COLUMNS}
        """),
        {
            "channel_id": channel_id,
            "seq": seq,
            "sender_id": sender_id,
            "recipient_id": recipient_id,
            "content": content,
            "message_type": message_type,
            "context_type": context_type,
            "context_id": context_id,
        },
    ).fetchone()

    return _row_to_out(row)


def list_channel(
    db: Session,
    user_a: UUID,
    user_b: UUID,
    context_type: str,
    context_id: str | None = None,
    cursor: str | None = None,
    limit: int = DEFAULT_LIMIT,
) -> tuple[list[MessageOut], PageInfo]:
    """List a channel's messages in ascending seq order.

    A channel that has never had a message returns an empty page.

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): Malformed cursor.
        InvalidRequestError(E_VALIDATION_FAILED): Unknown context type.
    """
    limit = clamp_limit(limit)
    validate_context(context_type, context_id)
    after = decode_seq_cursor(cursor) if cursor else None

    channel_id = _find_channel_id(db, user_a, user_b, context_type, context_id)
    if channel_id is None:
        return [], PageInfo(next_cursor=None)

    params: dict = {"channel_id": channel_id, "limit": limit + 1}
    cursor_clause = ""
    if after is not None:
        cursor_clause = "AND (seq, id) > (:cursor_seq, :cursor_id)"
        params["cursor_seq"], params["cursor_id"] = after

    rows = db.execute(
        text(f"""
            SELECT {_COLUMNS} FROM messages
            WHERE channel_id = :channel_id {cursor_clause}
            ORDER BY seq ASC, id ASC
            LIMIT :limit
        """),
        params,
    ).fetchall()

    has_more = len(rows) > limit
    messages = [_row_to_out(row) for row in rows[:limit]]

    next_cursor = None
    if has_more and messages:
        last = messages[-1]
        next_cursor = encode_seq_cursor(last.seq, last.id)

    return messages, PageInfo(next_cursor=next_cursor)


def _get_message_row(db: Session, message_id: UUID) -> MessageOut | None:
    row = db.execute(
        text(f"SELECT {_COLUMNS} FROM messages WHERE id = :message_id"),
        {"message_id": message_id},
    ).fetchone()
    return _row_to_out(row) if row else None


def mark_read(db: Session, message_id: UUID, reader_id: UUID) -> MessageOut:
    """Set read_at on a message addressed to reader_id.

    Idempotent: once set, read_at never changes, and a repeat call returns
    the stored value.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): No such message.
        ForbiddenError(E_FORBIDDEN): reader is not the recipient.
    """
    message = _get_message_row(db, message_id)
    if message is None:
        raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")
    if message.recipient_id != reader_id:
        raise ForbiddenError(ApiErrorCode.E_FORBIDDEN, "Only the recipient can mark a message read")

    row = db.execute(
        text(f"""
            UPDATE messages
            SET read_at = clock_timestamp()
            WHERE id = :message_id AND read_at IS NULL
            RETURNING {_COLUMNS}
        """),
        {"message_id": message_id},
    ).fetchone()
    if row is not None:
        return _row_to_out(row)

    # Already read; concurrent readers see the committed value.
    return _get_message_row(db, message_id)


def mark_messages_read(
    db: Session, reader_id: UUID, message_ids: list[UUID]
) -> dict[UUID, datetime]:
    """Mark every unread message in message_ids addressed to reader_id.

    Messages sent by the reader are left alone.

    Returns:
        Mapping of newly-marked message id to its read_at.
    """
    if not message_ids:
        return {}

    rows = db.execute(
        text("""
            UPDATE messages
            SET read_at = clock_timestamp()
            WHERE id = ANY(:message_ids)
              AND recipient_id = :reader_id
              AND read_at IS NULL
            RETURNING id, read_at
        """),
        {"message_ids": list(message_ids), "reader_id": reader_id},
    ).fetchall()
    return {row[0]: row[1] for row in rows}


def count_unread(db: Session, user_id: UUID, context_type: str | None = None) -> int:
    """Count messages addressed to user_id that are still unread."""
    params: dict = {"user_id": user_id}
    context_clause = ""
    if context_type is not None:
        context_clause = "AND context_type = :context_type"
        params["context_type"] = context_type

    result = db.execute(
        text(f"""
            SELECT count(*) FROM messages
            WHERE recipient_id = :user_id AND read_at IS NULL {context_clause}
        """),
        params,
    ).scalar()
    return result or 0


def get_message(db: Session, viewer_id: UUID, message_id: UUID) -> MessageOut:
    """Get a message the viewer sent or received.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): Missing or viewer not a participant.
    """
    message = _get_message_row(db, message_id)
    if message is None or viewer_id not in (message.sender_id, message.recipient_id):
        raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")
    return message
