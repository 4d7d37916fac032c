"""Database module for Conecta.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from conecta.db.engine import create_db_engine, get_engine
from conecta.db.models import (
    Base,
    Connection,
    ConnectionStatus,
    ContextType,
    Message,
    MessageChannel,
    MessageIdempotencyKey,
    MessageType,
    User,
)
from conecta.db.session import get_db, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    # Base
    "Base",
    # Enums
    "ConnectionStatus",
    "ContextType",
    "MessageType",
    # Models
    "User",
    "Connection",
    "MessageChannel",
    "Message",
    "MessageIdempotencyKey",
]
