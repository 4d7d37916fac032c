"""SQLAlchemy ORM models for Conecta.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
The schema itself is owned by Alembic migrations; these models mirror it
(including constraint names) so ORM reads and raw SQL agree.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class ConnectionStatus(str, PyEnum):
    """Connection request lifecycle states.

    States:
        pending: Requested, waiting for the addressee
        accepted: Terminal; enables messaging between the pair
        declined: Terminal; the pair may start a fresh request cycle
    """

    pending = "pending"
    accepted = "accepted"
    declined = "declined"


class ContextType(str, PyEnum):
    """Scopes a message channel to a subject."""

    general = "general"
    entrepreneurship = "entrepreneurship"
    job_application = "job_application"
    youth_application = "youth_application"


class MessageType(str, PyEnum):
    """Payload kind of a direct message."""

    text = "text"


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """User account mirror.

    The user ID matches the identity provider's user ID (sub claim).
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("now()"),
        nullable=False,
    )


class Connection(Base):
    """A directed connection request between two users.

    At most one active (pending/accepted) row exists per unordered pair;
    declined rows are retained as history.
    """

    __tablename__ = "connections"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    requester_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    addressee_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default="pending")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("now()"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("now()"),
        nullable=False,
    )
    responded_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'declined')",
            name="ck_connections_status",
        ),
        CheckConstraint(
            "requester_id <> addressee_id",
            name="ck_connections_not_self",
        ),
        CheckConstraint(
            "(status = 'pending' AND responded_at IS NULL) "
            "OR (status <> 'pending' AND responded_at IS NOT NULL)",
            name="ck_connections_responded_at",
        ),
        CheckConstraint(
            "(status = 'accepted') = (accepted_at IS NOT NULL)",
            name="ck_connections_accepted_at",
        ),
        Index(
            "uix_connections_active_pair",
            text("LEAST(requester_id, addressee_id)"),
            text("GREATEST(requester_id, addressee_id)"),
            unique=True,
            postgresql_where=text("status IN ('pending', 'accepted')"),
        ),
        Index("ix_connections_addressee_status", "addressee_id", "status"),
        Index("ix_connections_requester_status", "requester_id", "status"),
    )

    # Relationships
    requester: Mapped["User"] = relationship("User", foreign_keys=[requester_id])
    addressee: Mapped["User"] = relationship("User", foreign_keys=[addressee_id])


class MessageChannel(Base):
    """Channel model - sequence counter for one (pair, context) message stream.

    The pair is stored canonicalized (user_low_id < user_high_id) and an
    absent context_id is stored as an empty context_key.
    """

    __tablename__ = "message_channels"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_low_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_high_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    context_type: Mapped[str] = mapped_column(Text, nullable=False)
    context_key: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    next_seq: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("now()"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("now()"),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("user_low_id < user_high_id", name="ck_message_channels_pair_order"),
        CheckConstraint("next_seq >= 1", name="ck_message_channels_next_seq_positive"),
        CheckConstraint(
            "context_type IN ('general', 'entrepreneurship', 'job_application', "
            "'youth_application')",
            name="ck_message_channels_context_type",
        ),
        UniqueConstraint(
            "user_low_id",
            "user_high_id",
            "context_type",
            "context_key",
            name="uix_message_channels_pair_context",
        ),
    )

    messages: Mapped[list["Message"]] = relationship("Message", back_populates="channel")


class Message(Base):
    """Message model - an immutable direct message within a channel."""

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    channel_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("message_channels.id", ondelete="CASCADE"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    sender_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    recipient_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(Text, nullable=False, server_default="text")
    context_type: Mapped[str] = mapped_column(Text, nullable=False)
    context_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("clock_timestamp()"),
        nullable=False,
    )
    read_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        CheckConstraint("sender_id <> recipient_id", name="ck_messages_not_self"),
        CheckConstraint("length(btrim(content)) > 0", name="ck_messages_content_not_blank"),
        CheckConstraint("message_type IN ('text')", name="ck_messages_message_type"),
        CheckConstraint(
            "context_type IN ('general', 'entrepreneurship', 'job_application', "
            "'youth_application')",
            name="ck_messages_context_type",
        ),
        UniqueConstraint("channel_id", "seq", name="uix_messages_channel_seq"),
        Index(
            "ix_messages_recipient_unread",
            "recipient_id",
            postgresql_where=text("read_at IS NULL"),
        ),
    )

    channel: Mapped["MessageChannel"] = relationship("MessageChannel", back_populates="messages")


class MessageIdempotencyKey(Base):
    """Request deduplication for message sends."""

    __tablename__ = "message_idempotency_keys"

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    key: Mapped[str] = mapped_column(Text, primary_key=True)
    payload_hash: Mapped[str] = mapped_column(Text, nullable=False)
    message_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("now()"),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "length(key) >= 1 AND length(key) <= 128",
            name="ck_message_idempotency_keys_key_length",
        ),
    )

    message: Mapped["Message"] = relationship("Message")
