"""Sequence assignment for message ordering within a channel.

Each channel row carries a next_seq counter (starts at 1). Assignment locks
the channel row with FOR UPDATE, reads next_seq and increments it, so two
appends to the same channel serialize and get consecutive numbers while
appends to different channels never contend.

Must be called within an existing transaction.
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from conecta.logging import get_logger

logger = get_logger(__name__)


def assign_next_channel_seq(db: Session, channel_id: UUID) -> int:
    """Atomically assign the next message sequence number for a channel.

    Does not open or commit its own transaction; the row lock is held until
    the caller's transaction ends.

    Returns:
        The sequence number to use for the new message.

    Raises:
        ValueError: If the channel does not exist.
    """
    row = db.execute(
        text("SELECT next_seq FROM message_channels WHERE id = :channel_id FOR UPDATE"),
        {"channel_id": channel_id},
    ).fetchone()

    if row is None:
        raise ValueError(f"Channel {channel_id} not found")

    seq = row[0]
    db.execute(
        text("""
            UPDATE message_channels
            SET next_seq = next_seq + 1, updated_at = now()
            WHERE id = :channel_id
        """),
        {"channel_id": channel_id},
    )
    logger.debug("assigned_message_seq", channel_id=str(channel_id), seq=seq)
    return seq
