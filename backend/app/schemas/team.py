"""
Team schemas.

Request/response models for team and member management endpoints.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Team
# ---------------------------------------------------------------------------

class TeamCreateRequest(BaseModel):
    """Request body for POST /teams."""

    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=2000)


class TeamUpdateRequest(BaseModel):
    """Request body for PATCH /teams/{team_id}."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=2000)


class TeamResponse(BaseModel):
    """Team detail response."""

    id: UUID
    name: str
    description: str | None
    owner_id: UUID
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TeamsListResponse(BaseModel):
    """Response for GET /teams."""

    teams: list[TeamResponse]
    total: int


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

class MemberResponse(BaseModel):
    """Single team member with user info and role."""

    id: UUID
    user_id: UUID
    email: str
    display_name: str
    role: str
    joined_at: datetime


class MembersListResponse(BaseModel):
    """Response for GET /teams/{team_id}/members."""

    members: list[MemberResponse]
    total: int


class MemberAddRequest(BaseModel):
    """Request body for POST /teams/{team_id}/members."""

    user_id: UUID
    role: str = Field(default="member", pattern="^(admin|member)$")


class MemberRoleUpdateRequest(BaseModel):
    """Request body for PATCH /teams/{team_id}/members/{user_id}."""

    role: str = Field(pattern="^(admin|member)$")
