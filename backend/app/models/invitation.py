"""
TeamInvitation ORM model.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import DateTime, Enum, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, UUIDMixin, as_utc, utcnow
from app.models.member import TeamRole

if TYPE_CHECKING:
    from app.models.team import Team
    from app.models.user import User


class InvitationStatus(str, enum.Enum):
    """
    Invitation state.

    pending is initial; accepted, declined and expired are terminal.
    """

    pending = "pending"
    accepted = "accepted"
    declined = "declined"
    expired = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not InvitationStatus.pending


class TeamInvitation(Base, UUIDMixin):
    """Offer for an email address to join a team with a given role."""

    __tablename__ = "team_invitations"
    __table_args__ = (
        UniqueConstraint("email", "team_id", name="uq_team_invitations_email_team"),
    )

    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    team_id: Mapped[UUID] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invited_by: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[TeamRole] = mapped_column(
        Enum(TeamRole, name="team_role"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    status: Mapped[InvitationStatus] = mapped_column(
        Enum(InvitationStatus, name="invitation_status"),
        nullable=False,
        default=InvitationStatus.pending,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    # Relationships
    team: Mapped[Team] = relationship("Team", back_populates="invitations")
    inviter: Mapped[User] = relationship("User")

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once expires_at has passed, whether or not the sweep has run."""
        return as_utc(self.expires_at) < (now or utcnow())

    def __repr__(self) -> str:
        return (
            f"<TeamInvitation id={self.id} email={self.email!r} "
            f"team_id={self.team_id} status={self.status}>"
        )
