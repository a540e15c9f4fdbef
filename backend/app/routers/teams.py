"""
Team management endpoints.

Create, update, delete, member management.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user, get_team_member, require_role
from app.models.member import TeamMember, TeamRole
from app.models.team import Team
from app.models.user import User
from app.schemas.team import (
    MemberAddRequest,
    MemberResponse,
    MemberRoleUpdateRequest,
    MembersListResponse,
    TeamCreateRequest,
    TeamResponse,
    TeamsListResponse,
    TeamUpdateRequest,
)
from app.services.team_service import TeamService

router = APIRouter()


def get_team_service(db: AsyncSession = Depends(get_db)) -> TeamService:
    """Dependency that constructs TeamService."""
    return TeamService(db=db)


# ---------------------------------------------------------------------------
# Create / List Teams
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=TeamResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new team",
)
async def create_team(
    data: TeamCreateRequest,
    current_user: User = Depends(get_current_user),
    service: TeamService = Depends(get_team_service),
) -> TeamResponse:
    """Create a team. The creator becomes its owner."""
    return await service.create_team(data, current_user)


@router.get(
    "",
    response_model=TeamsListResponse,
    summary="List my teams",
)
async def list_my_teams(
    current_user: User = Depends(get_current_user),
    service: TeamService = Depends(get_team_service),
) -> TeamsListResponse:
    return await service.list_user_teams(current_user.id)


# ---------------------------------------------------------------------------
# Get / Update / Delete Team
# ---------------------------------------------------------------------------

@router.get(
    "/{team_id}",
    response_model=TeamResponse,
    summary="Get team details",
)
async def get_team(
    team_and_member: tuple[Team, TeamMember] = Depends(get_team_member),
    service: TeamService = Depends(get_team_service),
) -> TeamResponse:
    """Get team details. Must be a member."""
    team, _ = team_and_member
    return await service.get_team(team.id)


@router.patch(
    "/{team_id}",
    response_model=TeamResponse,
    summary="Update team name or description",
)
async def update_team(
    data: TeamUpdateRequest,
    team_and_member: tuple[Team, TeamMember] = Depends(
        require_role(TeamRole.owner, TeamRole.admin)
    ),
    service: TeamService = Depends(get_team_service),
) -> TeamResponse:
    team, _ = team_and_member
    return await service.update_team(team, data)


@router.delete(
    "/{team_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a team",
)
async def delete_team(
    team_and_member: tuple[Team, TeamMember] = Depends(get_team_member),
    service: TeamService = Depends(get_team_service),
) -> None:
    """Delete the team, its memberships and its invitations. Owner only."""
    team, member = team_and_member
    await service.delete_team(team, member)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

@router.get(
    "/{team_id}/members",
    response_model=MembersListResponse,
    summary="List team members",
)
async def list_members(
    team_and_member: tuple[Team, TeamMember] = Depends(get_team_member),
    service: TeamService = Depends(get_team_service),
) -> MembersListResponse:
    team, _ = team_and_member
    return await service.list_members(team.id)


@router.post(
    "/{team_id}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add an existing user to the team",
)
async def add_member(
    data: MemberAddRequest,
    team_and_member: tuple[Team, TeamMember] = Depends(
        require_role(TeamRole.owner, TeamRole.admin)
    ),
    service: TeamService = Depends(get_team_service),
) -> MemberResponse:
    team, _ = team_and_member
    return await service.add_member(team.id, data.user_id, data.role)


@router.patch(
    "/{team_id}/members/{user_id}",
    response_model=MemberResponse,
    summary="Update a member's role",
)
async def update_member_role(
    user_id: UUID,
    data: MemberRoleUpdateRequest,
    team_and_member: tuple[Team, TeamMember] = Depends(
        require_role(TeamRole.owner, TeamRole.admin)
    ),
    service: TeamService = Depends(get_team_service),
) -> MemberResponse:
    """
    Change a member's role.

    - Cannot change the owner's role
    - Admins cannot assign owner
    """
    team, acting_member = team_and_member
    return await service.update_member_role(team.id, user_id, data.role, acting_member)


@router.delete(
    "/{team_id}/members/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a member from the team",
)
async def remove_member(
    user_id: UUID,
    team_and_member: tuple[Team, TeamMember] = Depends(
        require_role(TeamRole.owner, TeamRole.admin)
    ),
    service: TeamService = Depends(get_team_service),
) -> None:
    """
    Remove a member from the team.

    - Cannot remove the owner
    - Admins cannot remove other admins
    """
    team, acting_member = team_and_member
    await service.remove_member(team.id, user_id, acting_member)
