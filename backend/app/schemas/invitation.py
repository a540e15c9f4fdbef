"""
Invitation schemas.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class InviteRequest(BaseModel):
    """Request body for POST /invitations/teams/{team_id}/invite."""

    email: EmailStr
    role: str = Field(default="member", pattern="^(admin|member)$")


class TeamSummary(BaseModel):
    id: UUID
    name: str

    model_config = {"from_attributes": True}


class InviterSummary(BaseModel):
    id: UUID
    display_name: str
    email: str

    model_config = {"from_attributes": True}


class InvitationResponse(BaseModel):
    """Invitation with team and inviter summaries."""

    id: UUID
    team_id: UUID
    email: str
    role: str
    status: str
    token: str
    expires_at: datetime
    created_at: datetime
    is_expired: bool
    team: TeamSummary | None = None
    inviter: InviterSummary | None = None


class InvitationsListResponse(BaseModel):
    """Response for invitation listings, most recent first."""

    invitations: list[InvitationResponse]
    total: int
