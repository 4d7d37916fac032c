"""First-login user bootstrap.

The identity provider owns accounts; this service keeps a local users row
so foreign keys and "recipient exists" checks have something to point at.
"""

from uuid import UUID

from sqlalchemy import text
from sqlalchemy.orm import Session

from conecta.db.session import transaction
from conecta.logging import get_logger

logger = get_logger(__name__)


def ensure_user(db: Session, user_id: UUID) -> bool:
    """Ensure a users row exists for user_id.

    Race-safe and idempotent (INSERT ... ON CONFLICT DO NOTHING).

    Returns:
        True if this call created the row.
    """
    with transaction(db):
        result = db.execute(
            text("""
                INSERT INTO users (id)
                VALUES (:user_id)
                ON CONFLICT (id) DO NOTHING
                RETURNING id
            """),
            {"user_id": user_id},
        )
        created = result.fetchone() is not None

    if created:
        logger.info("user_bootstrapped", bootstrapped_user_id=str(user_id))
    return created


def user_exists(db: Session, user_id: UUID) -> bool:
    """Check whether a users row exists."""
    row = db.execute(
        text("SELECT 1 FROM users WHERE id = :user_id"),
        {"user_id": user_id},
    ).fetchone()
    return row is not None
