"""
Invitation engine tests at the service level.

Verifies that:
- Only owners and admins can invite, list and cancel
- (email, team) never has more than one invitation row
- Accept creates exactly one membership and flips the status together
- Expired, already-processed and mismatched invitations are rejected
- A failed invitation email rolls the invitation back
- The expiry sweep is idempotent
"""

import uuid
from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select, update

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
from app.models.user import User
from app.schemas.team import TeamCreateRequest
from app.services import invitation_service as invitation_service_module
from app.services.invitation_service import InvitationService
from app.services.team_service import TeamService


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def make_user(db, email: str, display_name: str = "Test User") -> User:
    user = User(email=email, password_hash="unused-in-these-tests", display_name=display_name)
    db.add(user)
    await db.flush()
    return user


async def reload(db, invitation_id) -> TeamInvitation | None:
    result = await db.execute(
        select(TeamInvitation)
        .where(TeamInvitation.id == invitation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def count_invitations(db, team_id, email: str) -> int:
    return await db.scalar(
        select(func.count())
        .select_from(TeamInvitation)
        .where(TeamInvitation.team_id == team_id, TeamInvitation.email == email)
    )


async def get_member(db, team_id, user_id) -> TeamMember | None:
    result = await db.execute(
        select(TeamMember)
        .where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def expire_now(db, invitation_id) -> None:
    await db.execute(
        update(TeamInvitation)
        .where(TeamInvitation.id == invitation_id)
        .values(expires_at=utcnow() - timedelta(hours=1))
    )
    await db.commit()


@pytest.fixture()
async def world(db_session):
    """Team 'Platform' with an owner, an admin and a member, plus two outsiders."""
    owner = await make_user(db_session, "owner@example.com", "Olive Owner")
    admin = await make_user(db_session, "admin@example.com", "Adam Admin")
    member = await make_user(db_session, "member@example.com", "Mia Member")
    outsider = await make_user(db_session, "outsider@example.com", "Otto Outsider")
    invitee = await make_user(db_session, "a@x.com", "Ann Invitee")

    team = await TeamService(db_session).create_team(TeamCreateRequest(name="Platform"), owner)
    db_session.add_all([
        TeamMember(team_id=team.id, user_id=admin.id, role=TeamRole.admin),
        TeamMember(team_id=team.id, user_id=member.id, role=TeamRole.member),
    ])
    await db_session.commit()

    return SimpleNamespace(
        team_id=team.id,
        owner_id=owner.id,
        admin_id=admin.id,
        member_id=member.id,
        outsider_id=outsider.id,
        invitee_id=invitee.id,
    )


@pytest.fixture()
def service(db_session):
    return InvitationService(db_session)


# ---------------------------------------------------------------------------
# 1. Create
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_invitation_persists_single_pending_row(db_session, service, world, outbox):
    before = utcnow()
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    assert invitation.status == "pending"
    assert invitation.role == "member"
    assert invitation.team.name == "Platform"
    assert invitation.inviter.display_name == "Olive Owner"
    assert invitation.is_expired is False
    assert len(invitation.token) >= 32
    lifetime = invitation.expires_at - before
    assert timedelta(days=7) <= lifetime < timedelta(days=7, minutes=1)

    assert await count_invitations(db_session, world.team_id, "a@x.com") == 1
    assert len(outbox.sent) == 1
    assert outbox.sent[0]["to"] == ["a@x.com"]
    assert invitation.token in outbox.sent[0]["html"]


@pytest.mark.asyncio
async def test_admin_can_invite(db_session, service, world):
    invitation = await service.create_invitation(
        world.team_id, "new@example.com", TeamRole.admin, world.admin_id
    )
    assert invitation.role == "admin"


@pytest.mark.asyncio
async def test_second_pending_invite_conflicts(db_session, service, world):
    await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    with pytest.raises(ConflictError) as exc_info:
        await service.create_invitation(world.team_id, "a@x.com", "admin", world.owner_id)

    assert exc_info.value.code == "INVITE_EXISTS"
    assert await count_invitations(db_session, world.team_id, "a@x.com") == 1


@pytest.mark.asyncio
async def test_invite_email_is_normalized(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "  A@X.com ", "member", world.owner_id)
    assert invitation.email == "a@x.com"


@pytest.mark.asyncio
@pytest.mark.parametrize("actor", ["member_id", "outsider_id"])
async def test_non_manager_cannot_invite(db_session, service, world, actor):
    with pytest.raises(ForbiddenError):
        await service.create_invitation(world.team_id, "a@x.com", "member", getattr(world, actor))


@pytest.mark.asyncio
async def test_invite_to_missing_team(service, world):
    with pytest.raises(NotFoundError):
        await service.create_invitation(uuid.uuid4(), "a@x.com", "member", world.owner_id)


@pytest.mark.asyncio
async def test_cannot_invite_as_owner(service, world):
    with pytest.raises(ForbiddenError) as exc_info:
        await service.create_invitation(world.team_id, "a@x.com", "owner", world.owner_id)
    assert exc_info.value.code == "CANNOT_INVITE_OWNER"


@pytest.mark.asyncio
async def test_cannot_invite_existing_member(service, world):
    with pytest.raises(ConflictError) as exc_info:
        await service.create_invitation(world.team_id, "MEMBER@example.com", "member", world.owner_id)
    assert exc_info.value.code == "ALREADY_MEMBER"


@pytest.mark.asyncio
async def test_reinvite_replaces_terminal_invitation(db_session, service, world):
    first = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()
    await service.decline_invitation(first.token, world.invitee_id)
    await db_session.commit()

    second = await service.create_invitation(world.team_id, "a@x.com", "admin", world.owner_id)
    await db_session.commit()

    assert second.id != first.id
    assert second.token != first.token
    assert second.status == "pending"
    assert await reload(db_session, first.id) is None
    assert await count_invitations(db_session, world.team_id, "a@x.com") == 1


@pytest.mark.asyncio
async def test_failed_invitation_email_rolls_back(db_session, service, world, outbox):
    outbox.fail_sends = True

    with pytest.raises(NotificationError):
        await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)

    assert await count_invitations(db_session, world.team_id, "a@x.com") == 0


@pytest.mark.asyncio
async def test_failed_reinvite_email_keeps_previous_invitation(db_session, service, world, outbox):
    first = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()
    await service.decline_invitation(first.token, world.invitee_id)
    await db_session.commit()

    outbox.fail_sends = True
    with pytest.raises(NotificationError):
        await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)

    restored = await reload(db_session, first.id)
    assert restored is not None
    assert restored.status is InvitationStatus.declined


@pytest.mark.asyncio
async def test_invite_racing_another_invite_conflicts(db_session, service, world, outbox, monkeypatch):
    original_get = db_session.get
    raced = []

    async def get_after_competing_invite(entity, ident, **kwargs):
        # The inviter lookup runs after every uniqueness check has passed
        if entity is User and not raced:
            raced.append(True)
            db_session.add(
                TeamInvitation(
                    email="new@x.com",
                    team_id=world.team_id,
                    invited_by=world.admin_id,
                    role=TeamRole.member,
                    token="competing-token",
                    status=InvitationStatus.pending,
                    expires_at=utcnow() + timedelta(days=7),
                )
            )
            await db_session.commit()
        return await original_get(entity, ident, **kwargs)

    monkeypatch.setattr(db_session, "get", get_after_competing_invite)

    with pytest.raises(ConflictError) as exc_info:
        await service.create_invitation(world.team_id, "new@x.com", "member", world.owner_id)

    assert exc_info.value.code == "INVITE_EXISTS"
    assert outbox.sent == []

    tokens = await db_session.scalars(
        select(TeamInvitation.token).where(
            TeamInvitation.team_id == world.team_id, TeamInvitation.email == "new@x.com"
        )
    )
    assert tokens.all() == ["competing-token"]


# ---------------------------------------------------------------------------
# 2. Accept
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_accept_creates_membership_and_marks_accepted(db_session, service, world, outbox):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    await service.accept_invitation(invitation.token, world.invitee_id)
    await db_session.commit()

    member = await get_member(db_session, world.team_id, world.invitee_id)
    assert member is not None
    assert member.role is TeamRole.member
    assert (await reload(db_session, invitation.id)).status is InvitationStatus.accepted

    assert outbox.queued == [
        {"to_email": "owner@example.com", "member_name": "Ann Invitee", "team_name": "Platform"}
    ]


@pytest.mark.asyncio
async def test_accept_twice_conflicts(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "admin", world.owner_id)
    await db_session.commit()
    await service.accept_invitation(invitation.token, world.invitee_id)
    await db_session.commit()

    with pytest.raises(ConflictError) as exc_info:
        await service.accept_invitation(invitation.token, world.invitee_id)
    assert exc_info.value.code == "INVITE_ALREADY_PROCESSED"

    rows = await db_session.scalar(
        select(func.count()).select_from(TeamMember).where(TeamMember.user_id == world.invitee_id)
    )
    assert rows == 1


@pytest.mark.asyncio
async def test_accept_unknown_token(service, world):
    with pytest.raises(NotFoundError):
        await service.accept_invitation("no-such-token", world.invitee_id)


@pytest.mark.asyncio
async def test_accept_expired_invitation_changes_nothing(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()
    await expire_now(db_session, invitation.id)

    with pytest.raises(ExpiredError):
        await service.accept_invitation(invitation.token, world.invitee_id)

    assert (await reload(db_session, invitation.id)).status is InvitationStatus.pending
    assert await get_member(db_session, world.team_id, world.invitee_id) is None


@pytest.mark.asyncio
async def test_accept_by_other_user_forbidden(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    with pytest.raises(ForbiddenError) as exc_info:
        await service.accept_invitation(invitation.token, world.outsider_id)

    assert exc_info.value.code == "EMAIL_MISMATCH"
    assert (await reload(db_session, invitation.id)).status is InvitationStatus.pending


@pytest.mark.asyncio
async def test_accept_matches_email_case_insensitively(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "Ann@Example.com", "member", world.owner_id)
    user = await make_user(db_session, "ANN@example.COM", "Ann Two")
    user_id = user.id
    await db_session.commit()

    await service.accept_invitation(invitation.token, user_id)
    assert await get_member(db_session, world.team_id, user_id) is not None


@pytest.mark.asyncio
async def test_accept_when_already_member_conflicts(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    # Added directly between invite and accept
    db_session.add(TeamMember(team_id=world.team_id, user_id=world.invitee_id, role=TeamRole.member))
    await db_session.commit()

    with pytest.raises(ConflictError) as exc_info:
        await service.accept_invitation(invitation.token, world.invitee_id)

    assert exc_info.value.code == "ALREADY_MEMBER"
    assert (await reload(db_session, invitation.id)).status is InvitationStatus.pending


@pytest.mark.asyncio
async def test_status_change_loses_race(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    # Hold a stale copy while another request declines the invitation
    stale = await reload(db_session, invitation.id)
    await db_session.execute(
        update(TeamInvitation)
        .where(TeamInvitation.id == invitation.id)
        .values(status=InvitationStatus.declined)
        .execution_options(synchronize_session=False)
    )
    assert stale.status is InvitationStatus.pending

    with pytest.raises(ConflictError):
        await service._transition(stale, InvitationStatus.accepted)
    await db_session.commit()

    assert (await reload(db_session, invitation.id)).status is InvitationStatus.declined
    assert await get_member(db_session, world.team_id, world.invitee_id) is None


@pytest.mark.asyncio
async def test_accept_survives_notice_queue_failure(db_session, service, world, outbox):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()
    outbox.fail_queue = True

    await service.accept_invitation(invitation.token, world.invitee_id)
    await db_session.commit()

    assert (await reload(db_session, invitation.id)).status is InvitationStatus.accepted
    assert outbox.queued == []


@pytest.mark.asyncio
async def test_accept_loses_race_on_membership(db_session, service, world, monkeypatch):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "admin", world.owner_id)
    await db_session.commit()

    async def membership_added_after_check(db, team_id, user_id):
        found = await get_membership(db, team_id, user_id)
        if found is None:
            # A direct add by a manager lands between the check and the insert
            db.add(TeamMember(team_id=team_id, user_id=user_id, role=TeamRole.member))
            await db.commit()
        return found

    monkeypatch.setattr(invitation_service_module, "get_membership", membership_added_after_check)

    with pytest.raises(ConflictError) as exc_info:
        await service.accept_invitation(invitation.token, world.invitee_id)
    await db_session.commit()

    assert exc_info.value.code == "ALREADY_MEMBER"
    rows = await db_session.scalar(
        select(func.count()).select_from(TeamMember).where(
            TeamMember.team_id == world.team_id, TeamMember.user_id == world.invitee_id
        )
    )
    assert rows == 1
    assert (await get_member(db_session, world.team_id, world.invitee_id)).role is TeamRole.member
    assert (await reload(db_session, invitation.id)).status is InvitationStatus.pending


@pytest.mark.asyncio
async def test_acceptance_notice_waits_for_commit(db_session, service, world, outbox):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    await service.accept_invitation(invitation.token, world.invitee_id)
    assert outbox.queued == []

    await db_session.commit()
    assert len(outbox.queued) == 1


@pytest.mark.asyncio
async def test_no_acceptance_notice_when_rolled_back(db_session, service, world, outbox):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    await service.accept_invitation(invitation.token, world.invitee_id)
    await db_session.rollback()
    await db_session.commit()

    assert outbox.queued == []
    assert await get_member(db_session, world.team_id, world.invitee_id) is None
    assert (await reload(db_session, invitation.id)).status is InvitationStatus.pending


# ---------------------------------------------------------------------------
# 3. Decline
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_decline_then_decline_again(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    await service.decline_invitation(invitation.token, world.invitee_id)
    await db_session.commit()
    assert (await reload(db_session, invitation.id)).status is InvitationStatus.declined

    with pytest.raises(ConflictError):
        await service.decline_invitation(invitation.token, world.invitee_id)


@pytest.mark.asyncio
async def test_decline_expired_unswept_invitation(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()
    await expire_now(db_session, invitation.id)

    await service.decline_invitation(invitation.token, world.invitee_id)
    await db_session.commit()

    assert (await reload(db_session, invitation.id)).status is InvitationStatus.declined


@pytest.mark.asyncio
async def test_decline_by_other_user_forbidden(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    with pytest.raises(ForbiddenError):
        await service.decline_invitation(invitation.token, world.member_id)


@pytest.mark.asyncio
async def test_accept_after_decline_conflicts(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()
    await service.decline_invitation(invitation.token, world.invitee_id)
    await db_session.commit()

    with pytest.raises(ConflictError):
        await service.accept_invitation(invitation.token, world.invitee_id)


# ---------------------------------------------------------------------------
# 4. Cancel
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_member_cannot_cancel(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    with pytest.raises(ForbiddenError):
        await service.cancel_invitation(invitation.id, world.member_id)

    untouched = await reload(db_session, invitation.id)
    assert untouched is not None
    assert untouched.status is InvitationStatus.pending


@pytest.mark.asyncio
async def test_admin_cancel_deletes_row(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()

    await service.cancel_invitation(invitation.id, world.admin_id)
    await db_session.commit()

    assert await reload(db_session, invitation.id) is None
    # A fresh invite is possible right away
    again = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    assert again.status == "pending"


@pytest.mark.asyncio
async def test_cancel_unknown_invitation(service, world):
    with pytest.raises(NotFoundError):
        await service.cancel_invitation(uuid.uuid4(), world.owner_id)


# ---------------------------------------------------------------------------
# 5. Listing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_user_invitations_pending_unexpired_newest_first(db_session, service, world):
    teams = TeamService(db_session)
    owner = await db_session.get(User, world.owner_id)
    second = await teams.create_team(TeamCreateRequest(name="Second"), owner)
    third = await teams.create_team(TeamCreateRequest(name="Third"), owner)
    fourth = await teams.create_team(TeamCreateRequest(name="Fourth"), owner)
    await db_session.commit()

    older = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    newer = await service.create_invitation(second.id, "a@x.com", "admin", world.owner_id)
    stale = await service.create_invitation(third.id, "a@x.com", "member", world.owner_id)
    declined = await service.create_invitation(fourth.id, "a@x.com", "member", world.owner_id)
    await db_session.commit()
    await expire_now(db_session, stale.id)
    await service.decline_invitation(declined.token, world.invitee_id)
    await db_session.commit()

    result = await service.get_user_invitations("A@x.com")

    assert [inv.id for inv in result.invitations] == [newer.id, older.id]
    assert result.total == 2
    assert result.invitations[0].team.name == "Second"
    # Read-only: the expired row was not swept
    assert (await reload(db_session, stale.id)).status is InvitationStatus.pending


@pytest.mark.asyncio
async def test_team_invitations_for_managers_only(db_session, service, world):
    await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await service.create_invitation(world.team_id, "b@x.com", "member", world.owner_id)
    await db_session.commit()

    listed = await service.get_team_invitations(world.team_id, world.admin_id)
    assert [inv.email for inv in listed.invitations] == ["b@x.com", "a@x.com"]

    for actor in (world.member_id, world.outsider_id):
        with pytest.raises(ForbiddenError):
            await service.get_team_invitations(world.team_id, actor)


@pytest.mark.asyncio
async def test_user_invitations_include_invitation_expiring_now(db_session, service, world, monkeypatch):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    moment = utcnow() + timedelta(hours=1)
    await db_session.execute(
        update(TeamInvitation)
        .where(TeamInvitation.id == invitation.id)
        .values(expires_at=moment)
    )
    await db_session.commit()
    monkeypatch.setattr(invitation_service_module, "utcnow", lambda: moment)

    stored = await reload(db_session, invitation.id)
    assert not stored.is_expired(now=moment)

    result = await service.get_user_invitations("a@x.com")
    assert [inv.id for inv in result.invitations] == [invitation.id]


# ---------------------------------------------------------------------------
# 6. Expiry sweep
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cleanup_is_idempotent(db_session, service, world):
    stale = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    fresh = await service.create_invitation(world.team_id, "b@x.com", "member", world.owner_id)
    accepted = await service.create_invitation(world.team_id, "c@x.com", "member", world.owner_id)
    await db_session.commit()
    await expire_now(db_session, stale.id)
    await expire_now(db_session, accepted.id)
    await db_session.execute(
        update(TeamInvitation)
        .where(TeamInvitation.id == accepted.id)
        .values(status=InvitationStatus.accepted)
    )
    await db_session.commit()

    assert await service.cleanup_expired_invitations() == 1
    await db_session.commit()
    assert await service.cleanup_expired_invitations() == 0
    await db_session.commit()

    assert (await reload(db_session, stale.id)).status is InvitationStatus.expired
    assert (await reload(db_session, fresh.id)).status is InvitationStatus.pending
    assert (await reload(db_session, accepted.id)).status is InvitationStatus.accepted


@pytest.mark.asyncio
async def test_swept_invitation_cannot_be_accepted(db_session, service, world):
    invitation = await service.create_invitation(world.team_id, "a@x.com", "member", world.owner_id)
    await db_session.commit()
    await expire_now(db_session, invitation.id)
    await service.cleanup_expired_invitations()
    await db_session.commit()

    with pytest.raises(ConflictError):
        await service.accept_invitation(invitation.token, world.invitee_id)


# ---------------------------------------------------------------------------
# 7. Authorization helper
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_managerial_role_is_reevaluated(db_session, service, world):
    assert await has_managerial_role(db_session, world.team_id, world.admin_id)
    await service.create_invitation(world.team_id, "a@x.com", "member", world.admin_id)
    await db_session.commit()

    await db_session.execute(
        update(TeamMember)
        .where(TeamMember.team_id == world.team_id, TeamMember.user_id == world.admin_id)
        .values(role=TeamRole.member)
    )
    await db_session.commit()

    assert not await has_managerial_role(db_session, world.team_id, world.admin_id)
    with pytest.raises(ForbiddenError):
        await service.create_invitation(world.team_id, "b@x.com", "member", world.admin_id)


def test_role_managerial_flags():
    assert TeamRole.owner.is_managerial
    assert TeamRole.admin.is_managerial
    assert not TeamRole.member.is_managerial
    assert not InvitationStatus.pending.is_terminal
    assert all(s.is_terminal for s in (InvitationStatus.accepted, InvitationStatus.declined, InvitationStatus.expired))
