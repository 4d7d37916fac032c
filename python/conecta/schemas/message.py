"""Direct message Pydantic schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

# Valid context types - must match DB constraint
CONTEXT_TYPES = Literal["general", "entrepreneurship", "job_application", "youth_application"]

# Valid message types - must match DB constraint
MESSAGE_TYPES = Literal["text"]

MAX_CONTEXT_ID_LENGTH = 200


class MessageOut(BaseModel):
    """Response schema for a direct message.

    Messages are immutable; only read_at changes, once, when the recipient
    reads it. Messages are ordered by seq within a channel.
    """

    id: UUID
    channel_id: UUID
    seq: int
    sender_id: UUID
    recipient_id: UUID
    content: str
    message_type: MESSAGE_TYPES = "text"
    context_type: CONTEXT_TYPES
    context_id: str | None = None
    created_at: datetime
    read_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class SendMessageRequest(BaseModel):
    """Request body for POST /messages.

    Content length and blankness are checked by the service so the limit
    stays configurable.
    """

    recipient_id: UUID
    content: str
    context_type: CONTEXT_TYPES = "general"
    context_id: str | None = None

    model_config = ConfigDict(extra="forbid")


class ChannelSummaryOut(BaseModel):
    """One inbox row: a channel the viewer participates in."""

    channel_id: UUID
    other_user_id: UUID
    context_type: CONTEXT_TYPES
    context_id: str | None = None
    last_message: MessageOut
    unread_count: int
