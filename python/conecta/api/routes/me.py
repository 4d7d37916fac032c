"""Current user endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends

from conecta.auth.middleware import Viewer, get_viewer
from conecta.responses import success_response

router = APIRouter()


@router.get("/me")
async def get_me(viewer: Annotated[Viewer, Depends(get_viewer)]) -> dict:
    """Return the authenticated viewer's id."""
    return success_response({"user_id": str(viewer.user_id)})
