"""Notification badge schemas."""

from pydantic import BaseModel


class NotificationSummaryOut(BaseModel):
    """Counts the UI polls for its badges."""

    pending_connection_requests: int
    unread_messages: int
