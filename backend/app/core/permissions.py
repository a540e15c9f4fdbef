"""
Team authorization helpers.

Always queried fresh: roles can change between two calls.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.member import TeamMember


async def get_membership(db: AsyncSession, team_id: UUID, user_id: UUID) -> TeamMember | None:
    """Return the (team, user) membership row, if any."""
    result = await db.execute(
        select(TeamMember).where(
            TeamMember.team_id == team_id,
            TeamMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def has_managerial_role(db: AsyncSession, team_id: UUID, user_id: UUID) -> bool:
    """True iff the user is an OWNER or ADMIN of the team."""
    membership = await get_membership(db, team_id, user_id)
    return membership is not None and membership.role.is_managerial
