"""Notification badge routes."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from conecta.api.deps import get_db
from conecta.auth.middleware import Viewer, get_viewer
from conecta.responses import success_response
from conecta.services import notifications as notifications_service

router = APIRouter(tags=["notifications"])


@router.get("/notifications/summary")
def get_notification_summary(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Pending connection requests and unread messages for the viewer."""
    summary = notifications_service.get_notification_summary(db, viewer.user_id)
    return success_response(summary.model_dump(mode="json"))
