"""Networking schema - users, connections, message channels, messages, idempotency keys

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the connection request lifecycle and direct messaging tables.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

CONTEXT_TYPES_CHECK = (
    "context_type IN ('general', 'entrepreneurship', 'job_application', 'youth_application')"
)


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        sa.UUID(),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp_column(name: str, default: str = "now()") -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text(default),
        nullable=False,
    )


def upgrade() -> None:
    # Enable pgcrypto extension for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # users table
    # ==========================================================================
    op.create_table(
        "users",
        _id_column(),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    # ==========================================================================
    # connections table
    # ==========================================================================
    op.create_table(
        "connections",
        _id_column(),
        sa.Column("requester_id", sa.UUID(), nullable=False),
        sa.Column("addressee_id", sa.UUID(), nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.Column("responded_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["requester_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["addressee_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined')",
            name="ck_connections_status",
        ),
        sa.CheckConstraint("requester_id <> addressee_id", name="ck_connections_not_self"),
        sa.CheckConstraint(
            "(status = 'pending' AND responded_at IS NULL) "
            "OR (status <> 'pending' AND responded_at IS NOT NULL)",
            name="ck_connections_responded_at",
        ),
        sa.CheckConstraint(
            "(status = 'accepted') = (accepted_at IS NOT NULL)",
            name="ck_connections_accepted_at",
        ),
    )

    # At most one pending/accepted connection per unordered pair
    op.create_index(
        "uix_connections_active_pair",
        "connections",
        [
            sa.text("LEAST(requester_id, addressee_id)"),
            sa.text("GREATEST(requester_id, addressee_id)"),
        ],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'accepted')"),
    )
    op.create_index(
        "ix_connections_addressee_status", "connections", ["addressee_id", "status"]
    )
    op.create_index(
        "ix_connections_requester_status", "connections", ["requester_id", "status"]
    )

    # ==========================================================================
    # message_channels table
    # ==========================================================================
    op.create_table(
        "message_channels",
        _id_column(),
        sa.Column("user_low_id", sa.UUID(), nullable=False),
        sa.Column("user_high_id", sa.UUID(), nullable=False),
        sa.Column("context_type", sa.Text(), nullable=False),
        sa.Column("context_key", sa.Text(), server_default="", nullable=False),
        sa.Column("next_seq", sa.Integer(), server_default="1", nullable=False),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_low_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_high_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("user_low_id < user_high_id", name="ck_message_channels_pair_order"),
        sa.CheckConstraint("next_seq >= 1", name="ck_message_channels_next_seq_positive"),
        sa.CheckConstraint(CONTEXT_TYPES_CHECK, name="ck_message_channels_context_type"),
        sa.UniqueConstraint(
            "user_low_id",
            "user_high_id",
            "context_type",
            "context_key",
            name="uix_message_channels_pair_context",
        ),
    )
    op.create_index("ix_message_channels_user_high", "message_channels", ["user_high_id"])

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        _id_column(),
        sa.Column("channel_id", sa.UUID(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("sender_id", sa.UUID(), nullable=False),
        sa.Column("recipient_id", sa.UUID(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", sa.Text(), server_default="text", nullable=False),
        sa.Column("context_type", sa.Text(), nullable=False),
        sa.Column("context_id", sa.Text(), nullable=True),
        _timestamp_column("created_at", "clock_timestamp()"),
        sa.Column("read_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["channel_id"], ["message_channels.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recipient_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        sa.CheckConstraint("sender_id <> recipient_id", name="ck_messages_not_self"),
        sa.CheckConstraint("length(btrim(content)) > 0", name="ck_messages_content_not_blank"),
        sa.CheckConstraint("message_type IN ('text')", name="ck_messages_message_type"),
        sa.CheckConstraint(CONTEXT_TYPES_CHECK, name="ck_messages_context_type"),
        sa.UniqueConstraint("channel_id", "seq", name="uix_messages_channel_seq"),
    )
    op.create_index(
        "ix_messages_recipient_unread",
        "messages",
        ["recipient_id"],
        postgresql_where=sa.text("read_at IS NULL"),
    )

    # ==========================================================================
    # message_idempotency_keys table
    # ==========================================================================
    op.create_table(
        "message_idempotency_keys",
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("payload_hash", sa.Text(), nullable=False),
        sa.Column("message_id", sa.UUID(), nullable=False),
        _timestamp_column("created_at"),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "key"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "length(key) >= 1 AND length(key) <= 128",
            name="ck_message_idempotency_keys_key_length",
        ),
    )


def downgrade() -> None:
    op.drop_table("message_idempotency_keys")
    op.drop_index("ix_messages_recipient_unread", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_message_channels_user_high", table_name="message_channels")
    op.drop_table("message_channels")
    op.drop_index("ix_connections_requester_status", table_name="connections")
    op.drop_index("ix_connections_addressee_status", table_name="connections")
    op.drop_index("uix_connections_active_pair", table_name="connections")
    op.drop_table("connections")
    op.drop_table("users")
