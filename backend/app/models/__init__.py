"""
SQLAlchemy ORM models.

All models imported here to ensure they are registered with Base.metadata.
Import order matters: base models before dependent models.
"""

from app.models.base import Base, TimestampMixin, UUIDMixin
from app.models.member import TeamMember, TeamRole
from app.models.team import Team
from app.models.user import User
from app.models.invitation import InvitationStatus, TeamInvitation

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "Team",
    "User",
    "TeamMember",
    "TeamRole",
    "InvitationStatus",
    "TeamInvitation",
]
