"""
Team invitation endpoints.

Invite, list, accept, decline, cancel. Authorization is enforced by
InvitationService itself, not by route dependencies.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user
from app.models.user import User
from app.schemas.invitation import InvitationResponse, InvitationsListResponse, InviteRequest
from app.services.invitation_service import InvitationService

router = APIRouter()


def get_invitation_service(db: AsyncSession = Depends(get_db)) -> InvitationService:
    """Dependency that constructs InvitationService."""
    return InvitationService(db=db)


@router.post(
    "/teams/{team_id}/invite",
    response_model=InvitationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite an email address to a team",
)
async def invite_to_team(
    team_id: UUID,
    data: InviteRequest,
    current_user: User = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationResponse:
    """
    Invite someone to the team by email.

    - Requires owner or admin role
    - Sends the invitation email before responding
    - Expires after INVITATION_EXPIRE_DAYS (7 by default)
    """
    return await service.create_invitation(team_id, data.email, data.role, current_user.id)


@router.get(
    "/my-invitations",
    response_model=InvitationsListResponse,
    summary="List invitations addressed to me",
)
async def get_my_invitations(
    current_user: User = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationsListResponse:
    return await service.get_user_invitations(current_user.email)


@router.get(
    "/teams/{team_id}",
    response_model=InvitationsListResponse,
    summary="List a team's pending invitations",
)
async def get_team_invitations(
    team_id: UUID,
    current_user: User = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> InvitationsListResponse:
    return await service.get_team_invitations(team_id, current_user.id)


@router.patch(
    "/{token}/accept",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Accept an invitation",
)
async def accept_invitation(
    token: str,
    current_user: User = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> None:
    """Join the team. Must be logged in with the invited email address."""
    await service.accept_invitation(token, current_user.id)


@router.patch(
    "/{token}/decline",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Decline an invitation",
)
async def decline_invitation(
    token: str,
    current_user: User = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> None:
    await service.decline_invitation(token, current_user.id)


@router.delete(
    "/{invitation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Cancel an invitation",
)
async def cancel_invitation(
    invitation_id: UUID,
    current_user: User = Depends(get_current_user),
    service: InvitationService = Depends(get_invitation_service),
) -> None:
    """Delete the invitation so a fresh one can be sent. Requires owner or admin role."""
    await service.cancel_invitation(invitation_id, current_user.id)
