"""
User ORM model.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.member import TeamMember
    from app.models.team import Team


def normalize_email(email: str) -> str:
    """Canonical form used for storage and every email comparison."""
    return email.strip().lower()


class User(Base, UUIDMixin, TimestampMixin):
    """A registered account. Email is stored normalized."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Relationships
    team_memberships: Mapped[list[TeamMember]] = relationship(
        "TeamMember", back_populates="user", passive_deletes=True
    )
    owned_teams: Mapped[list[Team]] = relationship(
        "Team", back_populates="owner", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"
