"""FastAPI dependencies for route handlers."""

from conecta.auth.middleware import get_viewer
from conecta.db.session import get_db, get_session_factory

__all__ = ["get_db", "get_session_factory", "get_viewer"]
