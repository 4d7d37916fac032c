"""Connection persistence.

Owns the connections table and its invariants:
- requester and addressee differ
- at most one active (pending/accepted) record per unordered pair, enforced
  by the uix_connections_active_pair partial unique index
- only the addressee moves a record out of pending, exactly once

Functions here never open or commit transactions; ConnectionService owns
transaction boundaries.
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conecta.db.models import ConnectionStatus
from conecta.errors import (
    ApiErrorCode,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from conecta.logging import get_logger
from conecta.schemas.common import PageInfo
from conecta.schemas.connection import ConnectionOut
from conecta.services.pagination import (
    DEFAULT_LIMIT,
    clamp_limit,
    decode_created_cursor,
    encode_created_cursor,
)

logger = get_logger(__name__)

ACTIVE_PAIR_INDEX = "uix_connections_active_pair"

RESPONSE_STATUSES = frozenset({ConnectionStatus.accepted.value, ConnectionStatus.declined.value})

_COLUMNS = """
    id, requester_id, addressee_id, status, message,
    created_at, updated_at, responded_at, accepted_at
"""

_PAIR_CLAUSE = """
    ((requester_id = :user_a AND addressee_id = :user_b)
     OR (requester_id = :user_b AND addressee_id = :user_a))
"""


def _row_to_out(row) -> ConnectionOut:
    return ConnectionOut(**row._mapping)


def _is_active_pair_violation(exc: IntegrityError) -> bool:
    constraint_name = getattr(getattr(exc.orig, "diag", None), "constraint_name", None) or ""
    return ACTIVE_PAIR_INDEX in constraint_name or ACTIVE_PAIR_INDEX in str(exc)


def _duplicate_error() -> ConflictError:
    return ConflictError(
        ApiErrorCode.E_CONNECTION_EXISTS,
        "An active connection already exists between these users",
    )


def get_connection_row(db: Session, connection_id: UUID, lock: bool = False) -> ConnectionOut | None:
    """Load a connection by id, optionally locking it FOR UPDATE."""
    lock_clause = "FOR UPDATE" if lock else ""
    row = db.execute(
        text(f"SELECT {_COLUMNS} FROM connections WHERE id = :connection_id {lock_clause}"),
        {"connection_id": connection_id},
    ).fetchone()
    return _row_to_out(row) if row else None


def create_connection(
    db: Session,
    requester_id: UUID,
    addressee_id: UUID,
    message: str | None = None,
) -> ConnectionOut:
    """Insert a pending connection from requester to addressee.

    The pre-check gives the common case a clean error; the partial unique
    index decides concurrent inserts, and the loser is mapped to the same
    error.

    Raises:
        InvalidRequestError(E_SELF_REFERENCE): requester == addressee.
        ConflictError(E_CONNECTION_EXISTS): An active record exists for the pair.
    """
    if requester_id == addressee_id:
        raise InvalidRequestError(
            ApiErrorCode.E_SELF_REFERENCE, "Cannot request a connection with yourself"
        )

    existing = db.execute(
        text(f"""
            SELECT 1 FROM connections
            WHERE {_PAIR_CLAUSE}
              AND status IN ('pending', 'accepted')
        """),
        {"user_a": requester_id, "user_b": addressee_id},
    ).fetchone()
    if existing is not None:
        raise _duplicate_error()

    try:
        with db.begin_nested():
            row = db.execute(
                text(f"""
                    INSERT INTO connections (requester_id, addressee_id, status, message)
                    VALUES (:requester_id, :addressee_id, 'pending', :message)
                    RETURNING {_COLUMNS}
                """),
                {
                    "requester_id": requester_id,
                    "addressee_id": addressee_id,
                    "message": message,
                },
            ).fetchone()
    except IntegrityError as exc:
        if _is_active_pair_violation(exc):
            logger.info(
                "connection_create_race_lost",
                requester_id=str(requester_id),
                addressee_id=str(addressee_id),
            )
            raise _duplicate_error() from exc
        raise

    return _row_to_out(row)


def update_connection_status(
    db: Session,
    connection_id: UUID,
    actor_id: UUID,
    new_status: str,
) -> ConnectionOut:
    """Move a pending connection to accepted or declined.

    Locks the row, checks authority and state, then applies a compare-and-swap
    update conditional on status = 'pending'.

    Raises:
        NotFoundError(E_CONNECTION_NOT_FOUND): No such connection.
        ForbiddenError(E_FORBIDDEN): actor is not the addressee.
        ConflictError(E_INVALID_TRANSITION): Record is not pending, or
            new_status is not accepted/declined.
    """
    current = get_connection_row(db, connection_id, lock=True)
    if current is None:
        raise NotFoundError(ApiErrorCode.E_CONNECTION_NOT_FOUND, "Connection not found")

    if current.addressee_id != actor_id:
        raise ForbiddenError(
            ApiErrorCode.E_FORBIDDEN, "Only the addressee can respond to this request"
        )

    if new_status not in RESPONSE_STATUSES:
        raise ConflictError(
            ApiErrorCode.E_INVALID_TRANSITION, f"Cannot move a connection to {new_status!r}"
        )

    if current.status != ConnectionStatus.pending.value:
        raise ConflictError(
            ApiErrorCode.E_INVALID_TRANSITION,
            f"Connection is already {current.status}",
        )

    row = db.execute(
        text(f"""
            UPDATE connections
            SET status = :new_status,
                responded_at = now(),
                accepted_at = CASE WHEN :accepted THEN now() ELSE NULL END,
                updated_at = now()
            WHERE id = :connection_id AND status = 'pending'
            RETURNING {_COLUMNS}
        """),
        {
            "connection_id": connection_id,
            "new_status": new_status,
            "accepted": new_status == ConnectionStatus.accepted.value,
        },
    ).fetchone()

    if row is None:
        raise ConflictError(ApiErrorCode.E_INVALID_TRANSITION, "Connection is no longer pending")

    return _row_to_out(row)


def find_active_between(db: Session, user_a: UUID, user_b: UUID) -> ConnectionOut | None:
    """Return the active record for the pair, else the most recent one, else None."""
    row = db.execute(
        text(f"""
            SELECT {_COLUMNS} FROM connections
            WHERE {_PAIR_CLAUSE}
            ORDER BY (status IN ('pending', 'accepted')) DESC, created_at DESC, id DESC
            LIMIT 1
        """),
        {"user_a": user_a, "user_b": user_b},
    ).fetchone()
    return _row_to_out(row) if row else None


def list_connections_for_user(
    db: Session,
    user_id: UUID,
    status: str | None = None,
    role: str | None = None,
    limit: int = DEFAULT_LIMIT,
    cursor: str | None = None,
) -> tuple[list[ConnectionOut], PageInfo]:
    """List connections the user takes part in, newest first.

    Args:
        status: Optional status filter.
        role: "requester" (sent), "addressee" (received) or None (either).
        limit: Page size (clamped to 1-100).
        cursor: Opaque cursor from a previous page.

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): Malformed cursor.
    """
    limit = clamp_limit(limit)

    if role == "requester":
        conditions = ["requester_id = :user_id"]
    elif role == "addressee":
        conditions = ["addressee_id = :user_id"]
    else:
        conditions = ["(requester_id = :user_id OR addressee_id = :user_id)"]

    params: dict = {"user_id": user_id, "limit": limit + 1}

    if status is not None:
        conditions.append("status = :status")
        params["status"] = status

    if cursor:
        cursor_created_at, cursor_id = decode_created_cursor(cursor)
        conditions.append("(created_at, id) < (:cursor_created_at, :cursor_id)")
        params["cursor_created_at"] = cursor_created_at
        params["cursor_id"] = cursor_id

    rows = db.execute(
        text(f"""
            SELECT {_COLUMNS} FROM connections
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC, id DESC
            LIMIT :limit
        """),
        params,
    ).fetchall()

    has_more = len(rows) > limit
    connections = [_row_to_out(row) for row in rows[:limit]]

    next_cursor = None
    if has_more and connections:
        last = connections[-1]
        next_cursor = encode_created_cursor(last.created_at, last.id)

    return connections, PageInfo(next_cursor=next_cursor)
