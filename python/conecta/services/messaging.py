"""Messaging service layer.

Send, read and mark-read for direct messages. send_message is the only path
that writes messages and the only place the "accepted connection" gate is
enforced.

Idempotency:
- An optional Idempotency-Key (per sender) makes client retries safe
- Same key + same payload returns the original message without inserting
- Same key + different payload is E_IDEMPOTENCY_KEY_MISMATCH
- Keys expire after IDEMPOTENCY_KEY_TTL_HOURS and are then discarded
- Same-key sends serialize on a transaction-scoped advisory lock
"""

import hashlib
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from conecta.config import get_settings
from conecta.db.session import transaction
from conecta.errors import ApiError, ApiErrorCode, ForbiddenError, InvalidRequestError, NotFoundError
from conecta.logging import get_logger
from conecta.schemas.common import PageInfo
from conecta.schemas.message import MessageOut
from conecta.services import message_store
from conecta.services.bootstrap import user_exists
from conecta.services.connections import can_message
from conecta.services.pagination import DEFAULT_LIMIT

logger = get_logger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 128


def compute_payload_hash(
    recipient_id: UUID,
    content: str,
    context_type: str,
    context_id: str | None,
) -> str:
    """Compute a hash of the send payload for idempotency."""
    payload_str = f"{recipient_id}|{context_type}|{context_id or ''}|{content}"
    return hashlib.sha256(payload_str.encode()).hexdigest()


def _validate_idempotency_key(idempotency_key: str) -> None:
    if not 1 <= len(idempotency_key) <= MAX_IDEMPOTENCY_KEY_LENGTH:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            f"Idempotency-Key must be 1-{MAX_IDEMPOTENCY_KEY_LENGTH} characters",
        )


def _lock_idempotency_key(db: Session, user_id: UUID, idempotency_key: str) -> None:
    db.execute(
        text("SELECT pg_advisory_xact_lock(hashtextextended(:lock_key, 0))"),
        {"lock_key": f"message_idempotency:{user_id}:{idempotency_key}"},
    )


def check_idempotency(
    db: Session,
    user_id: UUID,
    idempotency_key: str,
    payload_hash: str,
) -> MessageOut | None:
    """Look up a live idempotency record.

    Returns:
        The original message on replay, None for a new request.

    Raises:
        ApiError(E_IDEMPOTENCY_KEY_MISMATCH): Key reused with a different payload.
    """
    record = db.execute(
        text("""
            SELECT payload_hash, message_id, expires_at
            FROM message_idempotency_keys
            WHERE user_id = :user_id AND key = :key
        """),
        {"user_id": user_id, "key": idempotency_key},
    ).fetchone()

    if record is None:
        return None

    stored_hash, message_id, expires_at = record

    if expires_at < datetime.now(UTC):
        db.execute(
            text("DELETE FROM message_idempotency_keys WHERE user_id = :user_id AND key = :key"),
            {"user_id": user_id, "key": idempotency_key},
        )
        return None

    if stored_hash != payload_hash:
        raise ApiError(
            ApiErrorCode.E_IDEMPOTENCY_KEY_MISMATCH,
            "Idempotency key reused with different payload",
        )

    logger.info("idempotency_replay", message_id=str(message_id))
    return message_store.get_message(db, user_id, message_id)


def _record_idempotency_key(
    db: Session,
    user_id: UUID,
    idempotency_key: str,
    payload_hash: str,
    message_id: UUID,
) -> None:
    ttl = timedelta(hours=get_settings().idempotency_key_ttl_hours)
    db.execute(
        text("""
            INSERT INTO message_idempotency_keys (user_id, key, payload_hash, message_id, expires_at)
            VALUES (:user_id, :key, :payload_hash, :message_id, :expires_at)
        """),
        {
            "user_id": user_id,
            "key": idempotency_key,
            "payload_hash": payload_hash,
            "message_id": message_id,
            "expires_at": datetime.now(UTC) + ttl,
        },
    )


# =============================================================================
# Service Functions
# =============================================================================


def send_message(
    db: Session,
    sender_id: UUID,
    recipient_id: UUID,
    context_type: str,
    context_id: str | None,
    content: str,
    idempotency_key: str | None = None,
) -> MessageOut:
    """Send a direct message from sender to recipient.

    The connection gate runs before content validation, so a pair without an
    accepted connection always gets E_NOT_CONNECTED.

    Raises:
        InvalidRequestError(E_SELF_REFERENCE): sender == recipient.
        NotFoundError(E_USER_NOT_FOUND): Recipient does not exist.
        ForbiddenError(E_NOT_CONNECTED): Pair has no accepted connection.
        InvalidRequestError(E_VALIDATION_FAILED): Blank/oversized content or bad context.
        ApiError(E_IDEMPOTENCY_KEY_MISMATCH): Key reused with a different payload.
    """
    if sender_id == recipient_id:
        raise InvalidRequestError(ApiErrorCode.E_SELF_REFERENCE, "Cannot message yourself")

    context_id = message_store.normalize_context_id(context_id)
    payload_hash = None
    if idempotency_key is not None:
        _validate_idempotency_key(idempotency_key)
        payload_hash = compute_payload_hash(recipient_id, content, context_type, context_id)

    with transaction(db):
        if idempotency_key is not None:
            _lock_idempotency_key(db, sender_id, idempotency_key)
            replay = check_idempotency(db, sender_id, idempotency_key, payload_hash)
            if replay is not None:
                return replay

        if not user_exists(db, recipient_id):
            raise NotFoundError(ApiErrorCode.E_USER_NOT_FOUND, "Recipient not found")

        if not can_message(db, sender_id, recipient_id):
            raise ForbiddenError(
                ApiErrorCode.E_NOT_CONNECTED,
                "An accepted connection is required to send messages",
            )

        message = message_store.append_message(
            db, sender_id, recipient_id, context_type, context_id, content
        )

        if idempotency_key is not None:
            _record_idempotency_key(db, sender_id, idempotency_key, payload_hash, message.id)

    logger.info(
        "message_sent",
        message_id=str(message.id),
        channel_id=str(message.channel_id),
        seq=message.seq,
        context_type=message.context_type,
    )
    return message


def get_channel(
    db: Session,
    viewer_id: UUID,
    other_user_id: UUID,
    context_type: str,
    context_id: str | None = None,
    cursor: str | None = None,
    limit: int = DEFAULT_LIMIT,
) -> tuple[list[MessageOut], PageInfo]:
    """Return one page of the viewer's channel with other_user_id.

    Opening a channel reads it: every message in the returned page addressed
    to the viewer is marked read. Messages the viewer sent are untouched.

    Raises:
        InvalidRequestError(E_SELF_REFERENCE): other_user_id is the viewer.
        InvalidRequestError(E_INVALID_CURSOR): Malformed cursor.
    """
    if viewer_id == other_user_id:
        raise InvalidRequestError(ApiErrorCode.E_SELF_REFERENCE, "Cannot open a chat with yourself")

    with transaction(db):
        messages, page = message_store.list_channel(
            db, viewer_id, other_user_id, context_type, context_id, cursor=cursor, limit=limit
        )
        unread_ids = [
            m.id for m in messages if m.recipient_id == viewer_id and m.read_at is None
        ]
        marked = message_store.mark_messages_read(db, viewer_id, unread_ids)

    if marked:
        messages = [
            m.model_copy(update={"read_at": marked[m.id]}) if m.id in marked else m
            for m in messages
        ]
    return messages, page


def mark_message_read(db: Session, viewer_id: UUID, message_id: UUID) -> MessageOut:
    """Explicit read receipt for one message.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): No such message.
        ForbiddenError(E_FORBIDDEN): Viewer is not the recipient.
    """
    with transaction(db):
        return message_store.mark_read(db, message_id, viewer_id)


def get_message(db: Session, viewer_id: UUID, message_id: UUID) -> MessageOut:
    """Get one message the viewer sent or received."""
    return message_store.get_message(db, viewer_id, message_id)
