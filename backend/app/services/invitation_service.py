"""
Invitation business logic.

Handles the team invitation lifecycle:
create -> (accept | decline | expire), plus cancel by a team manager.
Roles are re-checked against the database on every call.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from functools import partial
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from app.core.config import settings
from app.core.database import run_after_commit
from app.core.exceptions import (
    ConflictError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    NotificationError,
)
from app.core.permissions import get_membership, has_managerial_role
from app.models.base import utcnow
from app.models.invitation import InvitationStatus, TeamInvitation
from app.models.member import TeamMember, TeamRole
from app.models.team import Team
from app.models.user import User, normalize_email
from app.schemas.invitation import (
    InvitationResponse,
    InvitationsListResponse,
    InviterSummary,
    TeamSummary,
)
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)


class InvitationService:
    """Handles all team invitation operations."""

    def __init__(self, db: AsyncSession, mailer: EmailService | None = None) -> None:
        self.db = db
        self.mailer = mailer or EmailService()

    # -----------------------------------------------------------------------
    # Create Invitation
    # -----------------------------------------------------------------------

    async def create_invitation(
        self,
        team_id: UUID,
        email: str,
        role: TeamRole | str,
        requesting_user_id: UUID,
    ) -> InvitationResponse:
        """
        Invite an email address to a team.

        - Requesting user must be owner or admin of the team
        - Rejects addresses that already belong to a member
        - Rejects a second pending invitation for the same (email, team)
        - Replaces a terminal invitation for the same (email, team)
        - Sends the invitation email; rolls everything back if that fails
        """
        email = normalize_email(email)
        role = TeamRole(role)

        team = await self.db.get(Team, team_id)
        if team is None:
            raise NotFoundError("TEAM_NOT_FOUND", "Team not found")

        if not await has_managerial_role(self.db, team_id, requesting_user_id):
            raise ForbiddenError(
                "INSUFFICIENT_ROLE", "Only team owners and admins can invite members"
            )

        if role is TeamRole.owner:
            raise ForbiddenError("CANNOT_INVITE_OWNER", "A team has exactly one owner")

        existing_member = await self.db.execute(
            select(TeamMember.id)
            .join(User, TeamMember.user_id == User.id)
            .where(TeamMember.team_id == team_id, User.email == email)
        )
        if existing_member.first() is not None:
            raise ConflictError("ALREADY_MEMBER", "User is already a member of this team")

        existing_result = await self.db.execute(
            select(TeamInvitation).where(
                TeamInvitation.email == email,
                TeamInvitation.team_id == team_id,
            )
        )
        existing = existing_result.scalar_one_or_none()

        if existing is not None:
            if existing.status is InvitationStatus.pending:
                raise ConflictError(
                    "INVITE_EXISTS", "A pending invitation already exists for this email"
                )
            # (email, team_id) is unique; clear the terminal row first
            await self.db.delete(existing)
            await self.db.flush()

        inviter = await self.db.get(User, requesting_user_id)
        now = utcnow()

        invitation = TeamInvitation(
            email=email,
            team_id=team_id,
            invited_by=requesting_user_id,
            role=role,
            token=secrets.token_urlsafe(32),
            status=InvitationStatus.pending,
            created_at=now,
            expires_at=now + timedelta(days=settings.INVITATION_EXPIRE_DAYS),
        )
        self.db.add(invitation)
        try:
            await self.db.flush()
        except IntegrityError:
            # A concurrent request invited the same address after our checks
            await self.db.rollback()
            raise ConflictError(
                "INVITE_EXISTS", "A pending invitation already exists for this email"
            )

        try:
            await self.mailer.send_invitation_email(
                to_email=email,
                team_name=team.name,
                inviter_name=inviter.display_name,
                role=role.value,
                invitation_token=invitation.token,
            )
        except NotificationError:
            await self.db.rollback()
            raise

        logger.info(
            "Invitation %s created for %s to team %s by %s",
            invitation.id, email, team_id, requesting_user_id,
        )
        return self._to_response(invitation, team=team, inviter=inviter)

    # -----------------------------------------------------------------------
    # List Invitations
    # -----------------------------------------------------------------------

    async def get_user_invitations(self, email: str) -> InvitationsListResponse:
        """Pending, unexpired invitations addressed to email. Read-only."""
        result = await self.db.execute(
            select(TeamInvitation)
            .options(selectinload(TeamInvitation.team), selectinload(TeamInvitation.inviter))
            .where(
                TeamInvitation.email == normalize_email(email),
                TeamInvitation.status == InvitationStatus.pending,
                TeamInvitation.expires_at >= utcnow(),
            )
            .order_by(TeamInvitation.created_at.desc())
        )
        return self._to_list_response(result.scalars().all())

    async def get_team_invitations(
        self, team_id: UUID, requesting_user_id: UUID
    ) -> InvitationsListResponse:
        """Pending invitations of a team, for its owner and admins."""
        if not await has_managerial_role(self.db, team_id, requesting_user_id):
            raise ForbiddenError(
                "INSUFFICIENT_ROLE", "Only team owners and admins can view invitations"
            )

        result = await self.db.execute(
            select(TeamInvitation)
            .options(selectinload(TeamInvitation.team), selectinload(TeamInvitation.inviter))
            .where(
                TeamInvitation.team_id == team_id,
                TeamInvitation.status == InvitationStatus.pending,
            )
            .order_by(TeamInvitation.created_at.desc())
        )
        return self._to_list_response(result.scalars().all())

    # -----------------------------------------------------------------------
    # Accept Invitation
    # -----------------------------------------------------------------------

    async def accept_invitation(self, token: str, user_id: UUID) -> None:
        """
        Accept an invitation.

        - Token must exist, be pending and not be expired
        - The acting user's email must match the invitation's
        - The user must not already be on the team
        - Membership insert and status flip happen in one transaction
        - The inviter is notified only once that transaction commits
        """
        invitation = await self._get_by_token(token)

        if invitation.status is not InvitationStatus.pending:
            raise ConflictError("INVITE_ALREADY_PROCESSED", "Invitation has already been processed")

        if invitation.is_expired():
            raise ExpiredError("INVITE_EXPIRED", "Invitation has expired")

        user = await self._get_invitee(invitation, user_id, action="accept")

        if await get_membership(self.db, invitation.team_id, user.id) is not None:
            raise ConflictError("ALREADY_MEMBER", "You are already a member of this team")

        try:
            await self._transition(invitation, InvitationStatus.accepted)
            self.db.add(
                TeamMember(
                    team_id=invitation.team_id,
                    user_id=user.id,
                    role=invitation.role,
                )
            )
            await self.db.flush()
        except IntegrityError:
            # Lost a race: membership row appeared after the check above
            await self.db.rollback()
            raise ConflictError("ALREADY_MEMBER", "You are already a member of this team")

        logger.info("Invitation %s accepted by user %s", invitation.id, user.id)

        team = await self.db.get(Team, invitation.team_id)
        inviter = await self.db.get(User, invitation.invited_by)
        if team is not None and inviter is not None:
            run_after_commit(
                self.db,
                partial(
                    self.mailer.notify_invitation_accepted,
                    to_email=inviter.email,
                    member_name=user.display_name,
                    team_name=team.name,
                ),
            )

    # -----------------------------------------------------------------------
    # Decline Invitation
    # -----------------------------------------------------------------------

    async def decline_invitation(self, token: str, user_id: UUID) -> None:
        """
        Decline an invitation.

        Same ownership and status checks as accept. Expiry is not checked:
        an expired invitation the sweep has not reached can still be declined.
        """
        invitation = await self._get_by_token(token)

        if invitation.status is not InvitationStatus.pending:
            raise ConflictError("INVITE_ALREADY_PROCESSED", "Invitation has already been processed")

        user = await self._get_invitee(invitation, user_id, action="decline")

        await self._transition(invitation, InvitationStatus.declined)
        logger.info("Invitation %s declined by user %s", invitation.id, user.id)

    # -----------------------------------------------------------------------
    # Cancel Invitation
    # -----------------------------------------------------------------------

    async def cancel_invitation(self, invitation_id: UUID, requesting_user_id: UUID) -> None:
        """Delete an invitation outright so a fresh one can be issued."""
        invitation = await self.db.get(TeamInvitation, invitation_id)

        if invitation is None:
            raise NotFoundError("INVITE_NOT_FOUND", "Invitation not found")

        if not await has_managerial_role(self.db, invitation.team_id, requesting_user_id):
            raise ForbiddenError(
                "INSUFFICIENT_ROLE", "Only team owners and admins can cancel invitations"
            )

        await self.db.delete(invitation)
        await self.db.flush()
        logger.info("Invitation %s cancelled by user %s", invitation_id, requesting_user_id)

    # -----------------------------------------------------------------------
    # Expiry Sweep
    # -----------------------------------------------------------------------

    async def cleanup_expired_invitations(self) -> int:
        """
        Mark every pending invitation past its expiry as expired.

        Idempotent. Returns the number of rows changed.
        """
        result = await self.db.execute(
            update(TeamInvitation)
            .where(
                TeamInvitation.status == InvitationStatus.pending,
                TeamInvitation.expires_at < utcnow(),
            )
            .values(status=InvitationStatus.expired)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        logger.info("Expired %d pending invitations", result.rowcount)
        return result.rowcount

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _get_by_token(self, token: str) -> TeamInvitation:
        result = await self.db.execute(
            select(TeamInvitation)
            .where(TeamInvitation.token == token)
            .execution_options(populate_existing=True)
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise NotFoundError("INVITE_NOT_FOUND", "Invitation not found")
        return invitation

    async def _get_invitee(self, invitation: TeamInvitation, user_id: UUID, action: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None or normalize_email(user.email) != invitation.email:
            raise ForbiddenError(
                "EMAIL_MISMATCH", f"Only the invited user can {action} this invitation"
            )
        return user

    async def _transition(self, invitation: TeamInvitation, new_status: InvitationStatus) -> None:
        """
        Move a pending invitation to new_status.

        Conditional on the row still being pending, so of two concurrent
        requests only one can win; the other gets a Conflict.
        """
        result = await self.db.execute(
            update(TeamInvitation)
            .where(
                TeamInvitation.id == invitation.id,
                TeamInvitation.status == InvitationStatus.pending,
            )
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("INVITE_ALREADY_PROCESSED", "Invitation has already been processed")
        set_committed_value(invitation, "status", new_status)

    def _to_response(
        self,
        invitation: TeamInvitation,
        team: Team | None = None,
        inviter: User | None = None,
    ) -> InvitationResponse:
        return InvitationResponse(
            id=invitation.id,
            team_id=invitation.team_id,
            email=invitation.email,
            role=invitation.role.value,
            status=invitation.status.value,
            token=invitation.token,
            expires_at=invitation.expires_at,
            created_at=invitation.created_at,
            is_expired=invitation.is_expired(),
            team=TeamSummary.model_validate(team) if team is not None else None,
            inviter=InviterSummary.model_validate(inviter) if inviter is not None else None,
        )

    def _to_list_response(self, invitations: list[TeamInvitation]) -> InvitationsListResponse:
        items = [
            self._to_response(inv, team=inv.team, inviter=inv.inviter)
            for inv in invitations
        ]
        return InvitationsListResponse(invitations=items, total=len(items))
