"""
FastAPI dependency injection functions.

Provides Redis connections, current user and team role enforcement.
"""

from __future__ import annotations

from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import ForbiddenError, NotFoundError
from app.core.permissions import get_membership
from app.core.security import blacklist_redis_key, decode_access_token
from app.models.member import TeamMember, TeamRole
from app.models.team import Team
from app.models.user import User

# ---------------------------------------------------------------------------
# HTTP Bearer scheme (auto_error=False so we can return custom 401)
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """Return a shared async Redis client, created on first use."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_pool


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> User:
    """
    Validate Bearer JWT and return the authenticated User.

    Raises 401 if:
    - No token provided
    - Token is invalid or expired
    - JTI is blacklisted
    - User does not exist or is inactive
    """
    if credentials is None:
        raise _unauthorized("MISSING_TOKEN", "Authorization header required")

    try:
        payload = decode_access_token(credentials.credentials)
        user_id = UUID(payload.get("sub", ""))
    except (JWTError, ValueError):
        raise _unauthorized("INVALID_TOKEN", "Token is invalid or expired")

    if await redis.exists(blacklist_redis_key(payload.get("jti", ""))):
        raise _unauthorized("TOKEN_REVOKED", "Token has been revoked")

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise _unauthorized("USER_NOT_FOUND", "User not found or inactive")

    return user


# ---------------------------------------------------------------------------
# Team membership + role enforcement
# ---------------------------------------------------------------------------

async def get_team_member(
    team_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> tuple[Team, TeamMember]:
    """
    Resolve the team from the path and verify the current user is a member.

    Raises 404 if the team does not exist, 403 if the user is not a member.
    """
    team = await db.get(Team, team_id)
    if team is None:
        raise NotFoundError("TEAM_NOT_FOUND", "Team not found")

    member = await get_membership(db, team.id, current_user.id)
    if member is None:
        raise ForbiddenError("NOT_A_MEMBER", "You are not a member of this team")

    return team, member


def require_role(*roles: TeamRole):
    """
    Dependency factory that enforces one of the given team roles.

    Usage:
        @router.patch("/{team_id}")
        async def endpoint(
            team_and_member: tuple = Depends(require_role(TeamRole.owner, TeamRole.admin)),
        ):
            team, member = team_and_member
    """
    async def role_checker(
        team_and_member: tuple[Team, TeamMember] = Depends(get_team_member),
    ) -> tuple[Team, TeamMember]:
        _, member = team_and_member
        if member.role not in roles:
            raise ForbiddenError(
                "INSUFFICIENT_ROLE",
                f"Required role: {[r.value for r in roles]}",
            )
        return team_and_member

    return role_checker
