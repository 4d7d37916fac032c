"""Connection API routes.

Routes are transport-only: each calls exactly one service function.
All routes require authentication.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from conecta.api.deps import get_db
from conecta.auth.middleware import Viewer, get_viewer
from conecta.responses import paged_response, success_response
from conecta.schemas.connection import (
    CONNECTION_ROLES,
    CONNECTION_STATUSES,
    CreateConnectionRequest,
    RespondConnectionRequest,
)
from conecta.services import connections as connections_service

router = APIRouter(tags=["connections"])


@router.post("/connections", status_code=201)
def request_connection(
    body: CreateConnectionRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Send a connection request ("Conectar").

    Errors:
        E_SELF_REFERENCE (400), E_VALIDATION_FAILED (400),
        E_USER_NOT_FOUND (404), E_CONNECTION_EXISTS (409).
    """
    connection = connections_service.request_connection(
        db, viewer.user_id, body.addressee_id, body.message
    )
    return success_response(connection.model_dump(mode="json"))


@router.get("/connections")
def list_connections(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    status: CONNECTION_STATUSES | None = Query(default=None),
    role: CONNECTION_ROLES | None = Query(default=None, description="requester = sent"),
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results (1-100)"),
    cursor: str | None = Query(default=None, description="Pagination cursor"),
) -> dict:
    """List the viewer's connections, newest first."""
    connections, page = connections_service.list_connections(
        db, viewer.user_id, status=status, role=role, limit=limit, cursor=cursor
    )
    return paged_response(connections, page)


@router.get("/connections/status")
def get_viewer_status(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    with_user_id: UUID | None = Query(default=None),
    connection_id: UUID | None = Query(default=None),
) -> dict:
    """Viewer-relative status: none, pending_sent, pending_received, accepted or declined."""
    result = connections_service.viewer_status(
        db, viewer.user_id, other_user_id=with_user_id, connection_id=connection_id
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/connections/{connection_id}")
def get_connection(
    connection_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get one connection. Non-participants get E_CONNECTION_NOT_FOUND."""
    connection = connections_service.get_connection(db, viewer.user_id, connection_id)
    return success_response(connection.model_dump(mode="json"))


@router.post("/connections/{connection_id}/respond")
def respond_to_connection(
    connection_id: UUID,
    body: RespondConnectionRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Accept or decline a pending request addressed to the viewer.

    Errors:
        E_CONNECTION_NOT_FOUND (404), E_FORBIDDEN (403), E_INVALID_TRANSITION (409).
    """
    connection = connections_service.respond_to_connection(
        db, viewer.user_id, connection_id, accept=body.decision == "accept"
    )
    return success_response(connection.model_dump(mode="json"))
