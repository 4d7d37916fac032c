"""Read-only notification projections.

Counts and inbox rows the UI polls for its badges and chat sidebar. Nothing
here writes.
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from conecta.schemas.message import ChannelSummaryOut, MessageOut
from conecta.schemas.notification import NotificationSummaryOut
from conecta.services import message_store
from conecta.services.pagination import DEFAULT_LIMIT, clamp_limit


def count_pending_requests(db: Session, user_id: UUID) -> int:
    """Count pending connection requests addressed to user_id."""
    result = db.execute(
        text("""
            SELECT count(*) FROM connections
            WHERE addressee_id = :user_id AND status = 'pending'
        """),
        {"user_id": user_id},
    ).scalar()
    return result or 0


def count_unread_messages(db: Session, user_id: UUID, context_type: str | None = None) -> int:
    """Count unread messages addressed to user_id across all channels."""
    return message_store.count_unread(db, user_id, context_type)


def get_notification_summary(db: Session, viewer_id: UUID) -> NotificationSummaryOut:
    """Badge counts for the viewer."""
    return NotificationSummaryOut(
        pending_connection_requests=count_pending_requests(db, viewer_id),
        unread_messages=count_unread_messages(db, viewer_id),
    )


def list_channel_summaries(
    db: Session,
    viewer_id: UUID,
    context_type: str | None = None,
    limit: int = DEFAULT_LIMIT,
) -> list[ChannelSummaryOut]:
    """List the viewer's channels with their latest message and unread count.

    Ordered by latest message time, newest first. Channels without messages
    are omitted.
    """
    limit = clamp_limit(limit)
    params: dict = {"viewer_id": viewer_id, "limit": limit}
    context_clause = ""
    if context_type is not None:
        message_store.validate_context(context_type, None)
        context_clause = "AND c.context_type = :context_type"
        params["context_type"] = context_type

    rows = db.execute(
        text(f"""
            SELECT
                c.id AS channel_id,
                CASE WHEN c.user_low_id = :viewer_id THEN c.user_high_id
                     ELSE c.user_low_id END AS other_user_id,
                m.id, m.channel_id AS m_channel_id, m.seq, m.sender_id, m.recipient_id,
                m.content, m.message_type, m.context_type, m.context_id,
                m.created_at, m.read_at,
                (SELECT count(*) FROM messages u
                 WHERE u.channel_id = c.id
                   AND u.recipient_id = :viewer_id
                   AND u.read_at IS NULL) AS unread_count
            FROM message_channels c
            JOIN LATERAL (
                SELECT * FROM messages lm
                WHERE lm.channel_id = c.id
                ORDER BY lm.seq DESC
                LIMIT 1
            ) m ON true
            WHERE (c.user_low_id = :viewer_id OR c.user_high_id = :viewer_id)
              {context_clause}
            ORDER BY m.created_at DESC, c.id DESC
            LIMIT :limit
        """),
        params,
    ).fetchall()

    summaries = []
    for row in rows:
        last_message = MessageOut(
            id=row.id,
            channel_id=row.m_channel_id,
            seq=row.seq,
            sender_id=row.sender_id,
            recipient_id=row.recipient_id,
            content=row.content,
            message_type=row.message_type,
            context_type=row.context_type,
            context_id=row.context_id,
            created_at=row.created_at,
            read_at=row.read_at,
        )
        summaries.append(
            ChannelSummaryOut(
                channel_id=row.channel_id,
                other_user_id=row.other_user_id,
                context_type=row.context_type,
                context_id=row.context_id,
                last_message=last_message,
                unread_count=row.unread_count,
            )
        )
    return summaries
