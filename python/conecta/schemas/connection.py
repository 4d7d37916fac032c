"""Connection Pydantic schemas.

Request and response models for the connection request lifecycle.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict

# Valid connection statuses - must match DB constraint
CONNECTION_STATUSES = Literal["pending", "accepted", "declined"]

# Which side of the connection the viewer is on
CONNECTION_ROLES = Literal["requester", "addressee"]

# Viewer-relative status derived from the active (or most recent) record
VIEWER_STATUSES = Literal["none", "pending_sent", "pending_received", "accepted", "declined"]


# =============================================================================
# Response Schemas
# =============================================================================


class ConnectionOut(BaseModel):
    """Response schema for a connection record."""

    id: UUID
    requester_id: UUID
    addressee_id: UUID
    status: CONNECTION_STATUSES
    message: str | None = None
    created_at: datetime
    updated_at: datetime
    responded_at: datetime | None = None
    accepted_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ViewerStatusOut(BaseModel):
    """Connection state as seen by the viewer.

    connection_id is set whenever a record exists for the pair.
    """

    status: VIEWER_STATUSES
    connection_id: UUID | None = None


# =============================================================================
# Request Schemas
# =============================================================================


class CreateConnectionRequest(BaseModel):
    """Request body for POST /connections."""

    addressee_id: UUID
    message: str | None = None

    model_config = ConfigDict(extra="forbid")


class RespondConnectionRequest(BaseModel):
    """Request body for POST /connections/{id}/respond."""

    decision: Literal["accept", "decline"]

    model_config = ConfigDict(extra="forbid")
