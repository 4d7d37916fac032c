"""Connection service layer.

Public connection operations: request, respond, viewer-relative status and
the messaging gate. Each mutating operation runs in its own transaction and
delegates persistence and invariants to connection_store.

Service functions correspond 1:1 with route handlers.
Routes are transport-only and call exactly one service function.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from conecta.config import get_settings
from conecta.db.models import ConnectionStatus
from conecta.db.session import transaction
from conecta.errors import ApiErrorCode, InvalidRequestError, NotFoundError
from conecta.logging import get_logger
from conecta.schemas.common import PageInfo
from conecta.schemas.connection import ConnectionOut, ViewerStatusOut
from conecta.services import connection_store
from conecta.services.bootstrap import user_exists
from conecta.services.pagination import DEFAULT_LIMIT

logger = get_logger(__name__)


def _normalize_note(message: str | None) -> str | None:
    """Strip the optional request note; blank notes become None."""
    if message is None:
        return None
    message = message.strip()
    if not message:
        return None
    if "\x00" in message:
        raise InvalidRequestError(
            ApiErrorCode.E_VALIDATION_FAILED, "Connection note contains a NUL character"
        )

    max_chars = get_settings().max_connection_note_chars
    if len(message) > max_chars:
        raise InvalidRequestError(
            ApiErrorCode.E_VALIDATION_FAILED,
            f"Connection note exceeds {max_chars} characters",
        )
    return message


def derive_viewer_status(connection: ConnectionOut | None, viewer_id: UUID) -> ViewerStatusOut:
    """Map a connection record to the status the viewer sees."""
    if connection is None:
        return ViewerStatusOut(status="none")

    if connection.status == ConnectionStatus.pending.value:
        status = "pending_sent" if connection.requester_id == viewer_id else "pending_received"
    else:
        status = connection.status

    return ViewerStatusOut(status=status, connection_id=connection.id)


def _get_for_participant_or_404(
    db: Session, viewer_id: UUID, connection_id: UUID
) -> ConnectionOut:
    connection = connection_store.get_connection_row(db, connection_id)
    if connection is None or viewer_id not in (connection.requester_id, connection.addressee_id):
        raise NotFoundError(ApiErrorCode.E_CONNECTION_NOT_FOUND, "Connection not found")
    return connection


# =============================================================================
# Service Functions
# =============================================================================


def request_connection(
    db: Session,
    viewer_id: UUID,
    addressee_id: UUID,
    message: str | None = None,
) -> ConnectionOut:
    """Send a connection request from the viewer to addressee.

    Raises:
        InvalidRequestError(E_SELF_REFERENCE): Viewer requested themselves.
        InvalidRequestError(E_VALIDATION_FAILED): Note too long.
        NotFoundError(E_USER_NOT_FOUND): Addressee does not exist.
        ConflictError(E_CONNECTION_EXISTS): Pair already has an active connection.
    """
    if viewer_id == addressee_id:
        raise InvalidRequestError(
            ApiErrorCode.E_SELF_REFERENCE, "Cannot request a connection with yourself"
        )

    note = _normalize_note(message)

    with transaction(db):
        if not user_exists(db, addressee_id):
            raise NotFoundError(ApiErrorCode.E_USER_NOT_FOUND, "User not found")

        connection = connection_store.create_connection(db, viewer_id, addressee_id, note)

    logger.info(
        "connection_requested",
        connection_id=str(connection.id),
        addressee_id=str(addressee_id),
        has_note=note is not None,
    )
    return connection


def respond_to_connection(
    db: Session,
    viewer_id: UUID,
    connection_id: UUID,
    accept: bool,
) -> ConnectionOut:
    """Accept or decline a pending request addressed to the viewer.

    Raises:
        NotFoundError(E_CONNECTION_NOT_FOUND): No such connection.
        ForbiddenError(E_FORBIDDEN): Viewer is not the addressee.
        ConflictError(E_INVALID_TRANSITION): Request was already answered.
    """
    new_status = ConnectionStatus.accepted if accept else ConnectionStatus.declined

    with transaction(db):
        connection = connection_store.update_connection_status(
            db, connection_id, viewer_id, new_status.value
        )

    logger.info(
        "connection_responded",
        connection_id=str(connection_id),
        status=connection.status,
    )
    return connection


def viewer_status(
    db: Session,
    viewer_id: UUID,
    other_user_id: UUID | None = None,
    connection_id: UUID | None = None,
) -> ViewerStatusOut:
    """Return the viewer-relative connection status for a pair or a record.

    Exactly one of other_user_id / connection_id must be given.

    Raises:
        InvalidRequestError(E_INVALID_REQUEST): Neither or both given.
        NotFoundError(E_CONNECTION_NOT_FOUND): connection_id unknown or the
            viewer is not a participant.
    """
    if (other_user_id is None) == (connection_id is None):
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            "Provide exactly one of with_user_id or connection_id",
        )

    if connection_id is not None:
        return derive_viewer_status(
            _get_for_participant_or_404(db, viewer_id, connection_id), viewer_id
        )

    if other_user_id == viewer_id:
        return ViewerStatusOut(status="none")

    return derive_viewer_status(
        connection_store.find_active_between(db, viewer_id, other_user_id), viewer_id
    )


def can_message(db: Session, user_a: UUID, user_b: UUID) -> bool:
    """True iff the pair's active connection is accepted."""
    if user_a == user_b:
        return False
    connection = connection_store.find_active_between(db, user_a, user_b)
    return connection is not None and connection.status == ConnectionStatus.accepted.value


def get_connection(db: Session, viewer_id: UUID, connection_id: UUID) -> ConnectionOut:
    """Get a connection the viewer takes part in.

    Raises:
        NotFoundError(E_CONNECTION_NOT_FOUND): Missing or viewer not a participant.
    """
    return _get_for_participant_or_404(db, viewer_id, connection_id)


def list_connections(
    db: Session,
    viewer_id: UUID,
    status: str | None = None,
    role: str | None = None,
    limit: int = DEFAULT_LIMIT,
    cursor: str | None = None,
) -> tuple[list[ConnectionOut], PageInfo]:
    """List the viewer's connections, newest first."""
    return connection_store.list_connections_for_user(
        db, viewer_id, status=status, role=role, limit=limit, cursor=cursor
    )
