"""Direct message API routes.

Static paths (/messages/channel, /messages/channels) are declared before
/messages/{message_id}.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from conecta.api.deps import get_db
from conecta.auth.middleware import Viewer, get_viewer
from conecta.responses import paged_response, success_response
from conecta.schemas.message import CONTEXT_TYPES, SendMessageRequest
from conecta.services import messaging as messaging_service
from conecta.services import notifications as notifications_service

router = APIRouter(tags=["messages"])


@router.post("/messages", status_code=201)
def send_message(
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
) -> dict:
    """Send a direct message to a connected user.

    Errors:
        E_SELF_REFERENCE (400), E_VALIDATION_FAILED (400), E_USER_NOT_FOUND (404),
        E_NOT_CONNECTED (403), E_IDEMPOTENCY_KEY_MISMATCH (409).
    """
    message = messaging_service.send_message(
        db,
        viewer.user_id,
        body.recipient_id,
        body.context_type,
        body.context_id,
        body.content,
        idempotency_key=idempotency_key,
    )
    return success_response(message.model_dump(mode="json"))


@router.get("/messages/channel")
def get_channel(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    with_user_id: UUID = Query(...),
    context_type: CONTEXT_TYPES = Query(default="general"),
    context_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results (1-100)"),
    cursor: str | None = Query(default=None, description="Pagination cursor"),
) -> dict:
    """One page of the chat with with_user_id, oldest first. Marks incoming messages read."""
    messages, page = messaging_service.get_channel(
        db,
        viewer.user_id,
        with_user_id,
        context_type,
        context_id,
        cursor=cursor,
        limit=limit,
    )
    return paged_response(messages, page)


@router.get("/messages/channels")
def list_channels(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    context_type: CONTEXT_TYPES | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results (1-100)"),
) -> dict:
    """Inbox: the viewer's channels with last message and unread count."""
    summaries = notifications_service.list_channel_summaries(
        db, viewer.user_id, context_type=context_type, limit=limit
    )
    return success_response([s.model_dump(mode="json") for s in summaries])


@router.get("/messages/{message_id}")
def get_message(
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get one message the viewer sent or received."""
    message = messaging_service.get_message(db, viewer.user_id, message_id)
    return success_response(message.model_dump(mode="json"))


@router.post("/messages/{message_id}/read")
def mark_message_read(
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Read receipt. Idempotent; only the recipient may call it."""
    message = messaging_service.mark_message_read(db, viewer.user_id, message_id)
    return success_response(message.model_dump(mode="json"))
