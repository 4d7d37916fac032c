"""API route definitions.

Uses a factory so importing route modules does not load settings.
"""

from fastapi import APIRouter

from conecta.api.routes.connections import router as connections_router
from conecta.api.routes.health import router as health_router
from conecta.api.routes.me import router as me_router
from conecta.api.routes.messages import router as messages_router
from conecta.api.routes.notifications import router as notifications_router


def create_api_router() -> APIRouter:
    """Create the API router with every route registered."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(me_router, tags=["user"])
    api_router.include_router(connections_router)
    api_router.include_router(messages_router)
    api_router.include_router(notifications_router)
    return api_router


__all__ = ["create_api_router"]
