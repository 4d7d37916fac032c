"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from conecta.schemas.common import PageInfo
from conecta.schemas.connection import (
    ConnectionOut,
    CreateConnectionRequest,
    RespondConnectionRequest,
    ViewerStatusOut,
)
from conecta.schemas.message import ChannelSummaryOut, MessageOut, SendMessageRequest
from conecta.schemas.notification import NotificationSummaryOut

__all__ = [
    "PageInfo",
    # Connections
    "ConnectionOut",
    "CreateConnectionRequest",
    "RespondConnectionRequest",
    "ViewerStatusOut",
    # Messages
    "ChannelSummaryOut",
    "MessageOut",
    "SendMessageRequest",
    # Notifications
    "NotificationSummaryOut",
]
