"""
Team business logic.

Handles team creation, updates and member management.
Role checks for routes happen in dependencies; the rules about who may
change whom live here.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from app.core.permissions import get_membership
from app.models.invitation import TeamInvitation
from app.models.member import TeamMember, TeamRole
from app.models.team import Team
from app.models.user import User
from app.schemas.team import (
    MemberResponse,
    MembersListResponse,
    TeamCreateRequest,
    TeamResponse,
    TeamsListResponse,
    TeamUpdateRequest,
)

logger = logging.getLogger(__name__)


class TeamService:
    """Handles all team operations."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # -----------------------------------------------------------------------
    # Create Team
    # -----------------------------------------------------------------------

    async def create_team(self, data: TeamCreateRequest, owner: User) -> TeamResponse:
        """
        Create a new team.

        The creator's OWNER membership is written in the same transaction
        as the team row.
        """
        team = Team(name=data.name, description=data.description, owner_id=owner.id)
        self.db.add(team)
        await self.db.flush()

        self.db.add(TeamMember(team_id=team.id, user_id=owner.id, role=TeamRole.owner))
        await self.db.flush()

        logger.info("Team %s created by user %s", team.id, owner.id)
        return TeamResponse.model_validate(team)

    # -----------------------------------------------------------------------
    # Read
    # -----------------------------------------------------------------------

    async def list_user_teams(self, user_id: UUID) -> TeamsListResponse:
        """Teams the user belongs to, in any role."""
        result = await self.db.execute(
            select(Team)
            .join(TeamMember, TeamMember.team_id == Team.id)
            .where(TeamMember.user_id == user_id)
            .order_by(Team.created_at)
        )
        teams = [TeamResponse.model_validate(t) for t in result.scalars().all()]
        return TeamsListResponse(teams=teams, total=len(teams))

    async def get_team(self, team_id: UUID) -> TeamResponse:
        team = await self.db.get(Team, team_id)
        if team is None:
            raise NotFoundError("TEAM_NOT_FOUND", "Team not found")
        return TeamResponse.model_validate(team)

    # -----------------------------------------------------------------------
    # Update / Delete Team
    # -----------------------------------------------------------------------

    async def update_team(self, team: Team, data: TeamUpdateRequest) -> TeamResponse:
        if data.name is not None:
            team.name = data.name
        if data.description is not None:
            team.description = data.description

        await self.db.flush()
        await self.db.refresh(team)
        return TeamResponse.model_validate(team)

    async def delete_team(self, team: Team, acting_member: TeamMember) -> None:
        """Delete a team with its memberships and invitations. Owner only."""
        if acting_member.role is not TeamRole.owner:
            raise ForbiddenError("INSUFFICIENT_ROLE", "Only the team owner can delete the team")

        await self.db.execute(delete(TeamInvitation).where(TeamInvitation.team_id == team.id))
        await self.db.execute(delete(TeamMember).where(TeamMember.team_id == team.id))
        await self.db.delete(team)
        await self.db.flush()
        logger.info("Team %s deleted by user %s", team.id, acting_member.user_id)

    # -----------------------------------------------------------------------
    # Members
    # -----------------------------------------------------------------------

    async def list_members(self, team_id: UUID) -> MembersListResponse:
        """List all members of a team with user details."""
        result = await self.db.execute(
            select(TeamMember, User)
            .join(User, TeamMember.user_id == User.id)
            .where(TeamMember.team_id == team_id)
            .order_by(TeamMember.joined_at)
        )
        members = [self._member_response(member, user) for member, user in result.all()]
        return MembersListResponse(members=members, total=len(members))

    async def add_member(self, team_id: UUID, user_id: UUID, role: str) -> MemberResponse:
        """Add an existing user directly, bypassing the invitation flow."""
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("USER_NOT_FOUND", "User not found")

        if await get_membership(self.db, team_id, user_id) is not None:
            raise ConflictError("ALREADY_MEMBER", "User is already a member of this team")

        member = TeamMember(team_id=team_id, user_id=user_id, role=TeamRole(role))
        self.db.add(member)
        await self.db.flush()
        await self.db.refresh(member)
        return self._member_response(member, user)

    async def update_member_role(
        self,
        team_id: UUID,
        target_user_id: UUID,
        new_role: str,
        acting_member: TeamMember,
    ) -> MemberResponse:
        """
        Change a member's role.

        - Cannot change the owner's role
        - Admin cannot assign owner
        """
        target_member, target_user = await self._get_member_row(team_id, target_user_id)

        if target_member.role is TeamRole.owner:
            raise ForbiddenError("CANNOT_CHANGE_OWNER", "Cannot change the owner's role")

        if acting_member.role is TeamRole.admin and new_role == TeamRole.owner.value:
            raise ForbiddenError("INSUFFICIENT_ROLE", "Admins cannot assign owner role")

        target_member.role = TeamRole(new_role)
        await self.db.flush()
        return self._member_response(target_member, target_user)

    async def remove_member(
        self,
        team_id: UUID,
        target_user_id: UUID,
        acting_member: TeamMember,
    ) -> None:
        """
        Remove a member from the team.

        - Cannot remove the owner
        - Admin cannot remove other admins
        """
        target_member, _ = await self._get_member_row(team_id, target_user_id)

        if target_member.role is TeamRole.owner:
            raise ForbiddenError("CANNOT_REMOVE_OWNER", "Cannot remove the team owner")

        if acting_member.role is TeamRole.admin and target_member.role is TeamRole.admin:
            raise ForbiddenError("INSUFFICIENT_ROLE", "Admins cannot remove other admins")

        await self.db.delete(target_member)
        await self.db.flush()

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _get_member_row(self, team_id: UUID, user_id: UUID) -> tuple[TeamMember, User]:
        result = await self.db.execute(
            select(TeamMember, User)
            .join(User, TeamMember.user_id == User.id)
            .where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        )
        row = result.one_or_none()
        if row is None:
            raise NotFoundError("MEMBER_NOT_FOUND", "Member not found")
        return row[0], row[1]

    @staticmethod
    def _member_response(member: TeamMember, user: User) -> MemberResponse:
        return MemberResponse(
            id=member.id,
            user_id=member.user_id,
            email=user.email,
            display_name=user.display_name,
            role=member.role.value,
            joined_at=member.joined_at,
        )
