"""
Domain error taxonomy.

Every business-rule violation is raised as one of these. They are
HTTPException subclasses so FastAPI renders them as
{"detail": {"code": ..., "message": ...}} with the matching status.
"""

from __future__ import annotations

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Base class: an error kind with a machine code and a human message."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, code: str, message: str) -> None:
        super().__init__(
            status_code=self.status_code,
            detail={"code": code, "message": message},
        )
        self.code = code
        self.message = message


class NotFoundError(AppError):
    """Referenced entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(AppError):
    """Actor lacks the required role or identity match."""

    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(AppError):
    """Uniqueness or state violation."""

    status_code = status.HTTP_409_CONFLICT


class ExpiredError(AppError):
    """Invitation is past its validity window."""

    status_code = status.HTTP_410_GONE


class NotificationError(AppError):
    """Outbound email could not be delivered."""

    status_code = status.HTTP_502_BAD_GATEWAY
