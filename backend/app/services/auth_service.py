"""
Authentication business logic.

Handles user registration, email verification, login, token refresh and logout.
All business logic lives here; routers only handle HTTP concerns.
"""

from __future__ import annotations

import logging
from functools import partial
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from jose import JWTError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import run_after_commit
from app.core.exceptions import ConflictError, ForbiddenError, NotificationError
from app.core.security import (
    blacklist_redis_key,
    create_access_token,
    create_email_verification_token,
    create_refresh_token,
    decode_refresh_token,
    email_verification_redis_key,
    hash_password,
    refresh_token_redis_key,
    verify_password,
)
from app.models.user import User, normalize_email
from app.schemas.auth import LoginRequest, MeResponse, RegisterRequest, TokenResponse
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)


class AuthService:
    """Handles all authentication operations."""

    def __init__(
        self,
        db: AsyncSession,
        redis: aioredis.Redis,
        mailer: EmailService | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.mailer = mailer or EmailService()

    # -----------------------------------------------------------------------
    # Register
    # -----------------------------------------------------------------------

    async def register(self, data: RegisterRequest) -> TokenResponse:
        """
        Register a new user.

        - Enforces the global registration cap, if configured
        - Validates email uniqueness
        - Hashes password and creates the user
        - Sends the verification email; rolls the user back if that fails
        - Issues JWT tokens
        """
        email = normalize_email(data.email)

        if settings.MAX_REGISTERED_USERS:
            user_count = await self.db.scalar(select(func.count()).select_from(User))
            if user_count >= settings.MAX_REGISTERED_USERS:
                raise ForbiddenError("REGISTRATION_CLOSED", "Registration is currently closed")

        existing = await self.db.execute(select(User).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("EMAIL_TAKEN", "Email is already registered")

        user = User(
            email=email,
            password_hash=hash_password(data.password),
            display_name=data.display_name,
            email_verified=False,
        )
        self.db.add(user)
        await self.db.flush()

        token = create_email_verification_token()
        redis_key = email_verification_redis_key(token)
        await self.redis.setex(
            redis_key,
            settings.EMAIL_VERIFICATION_EXPIRE_HOURS * 60 * 60,
            str(user.id),
        )

        try:
            await self.mailer.send_verification_email(
                to_email=email,
                display_name=data.display_name,
                verification_token=token,
            )
        except NotificationError:
            await self.db.rollback()
            await self.redis.delete(redis_key)
            raise

        logger.info("User %s registered", user.id)
        return await self._issue_tokens(user)

    # -----------------------------------------------------------------------
    # Verify Email
    # -----------------------------------------------------------------------

    async def verify_email(self, token: str) -> MeResponse:
        """
        Complete email verification.

        - Validates the single-use token from Redis
        - Marks the user's email as verified
        - Queues the welcome email once the change commits
        """
        redis_key = email_verification_redis_key(token)
        user_id_str = await self.redis.get(redis_key)

        if user_id_str is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "INVALID_TOKEN", "message": "Verification link is invalid or expired"},
            )

        user = await self.db.get(User, UUID(user_id_str))
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "USER_NOT_FOUND", "message": "User not found"},
            )

        user.email_verified = True
        await self.db.flush()
        await self.redis.delete(redis_key)

        logger.info("User %s verified their email", user.id)
        run_after_commit(
            self.db,
            partial(self.mailer.notify_welcome, to_email=user.email, display_name=user.display_name),
        )
        return MeResponse.model_validate(user)

    # -----------------------------------------------------------------------
    # Login
    # -----------------------------------------------------------------------

    async def login(self, data: LoginRequest) -> TokenResponse:
        """
        Authenticate user with email + password.

        Raises 401 for invalid credentials (never reveals which field is wrong).
        """
        result = await self.db.execute(
            select(User).where(User.email == normalize_email(data.email))
        )
        user = result.scalar_one_or_none()

        if user is None or not verify_password(data.password, user.password_hash):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "INVALID_CREDENTIALS", "message": "Invalid email or password"},
            )

        if not user.is_active:
            raise ForbiddenError("ACCOUNT_DISABLED", "Account is disabled")

        return await self._issue_tokens(user)

    # -----------------------------------------------------------------------
    # Refresh
    # -----------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a valid refresh token for a new token pair.

        Refresh tokens are single-use: the old one is deleted from Redis.
        """
        try:
            payload = decode_refresh_token(refresh_token)
        except JWTError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "INVALID_TOKEN", "message": "Refresh token is invalid or expired"},
            )

        user_id: str = payload.get("sub", "")
        jti: str = payload.get("jti", "")

        redis_key = refresh_token_redis_key(user_id, jti)
        if not await self.redis.exists(redis_key):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "TOKEN_REVOKED", "message": "Refresh token has been revoked"},
            )

        user = await self.db.get(User, UUID(user_id))
        if user is None or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "USER_NOT_FOUND", "message": "User not found or inactive"},
            )

        await self.redis.delete(redis_key)
        return await self._issue_tokens(user)

    # -----------------------------------------------------------------------
    # Logout
    # -----------------------------------------------------------------------

    async def logout(self, access_token_jti: str, refresh_token: str) -> None:
        """Blacklist the access token JTI and drop the refresh token."""
        await self.redis.setex(
            blacklist_redis_key(access_token_jti),
            settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "1",
        )

        try:
            payload = decode_refresh_token(refresh_token)
        except JWTError:
            # Already expired; nothing to revoke
            return

        await self.redis.delete(
            refresh_token_redis_key(payload.get("sub", ""), payload.get("jti", ""))
        )

    # -----------------------------------------------------------------------
    # Get current user (me)
    # -----------------------------------------------------------------------

    async def get_me(self, user: User) -> MeResponse:
        return MeResponse.model_validate(user)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _issue_tokens(self, user: User) -> TokenResponse:
        """Create an access + refresh pair and store the refresh JTI in Redis."""
        user_id = str(user.id)

        refresh_token, refresh_jti = create_refresh_token(user_id)
        access_token = create_access_token(user_id)

        ttl_seconds = settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60
        await self.redis.setex(refresh_token_redis_key(user_id, refresh_jti), ttl_seconds, "1")

        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )
