"""
Outbound email.

Two delivery modes:
- send_invitation_email and send_verification_email are awaited and raise
  NotificationError on failure, so the caller can roll back the record it
  just created.
- notify_invitation_accepted and notify_welcome hand off to Celery and
  never raise.
"""

from __future__ import annotations

import asyncio
import logging

import resend

from app.core.config import settings
from app.core.exceptions import NotificationError

logger = logging.getLogger(__name__)


class EmailService:
    """Notification collaborator used by the invitation engine and registration."""

    async def send_invitation_email(
        self,
        *,
        to_email: str,
        team_name: str,
        inviter_name: str,
        role: str,
        invitation_token: str,
    ) -> str | None:
        """
        Deliver the initial invitation email via Resend.

        Returns the provider message id, or None when delivery is disabled
        in development (no API key configured).

        Raises:
            NotificationError: If the provider call fails.
        """
        accept_url = f"{settings.FRONTEND_URL}/invitations/{invitation_token}"

        params: resend.Emails.SendParams = {
            "from": settings.EMAIL_FROM,
            "to": [to_email],
            "subject": f"You've been invited to join {team_name} on TeamCal",
            "html": f"""
                <h2>You've been invited to a team</h2>
                <p><strong>{inviter_name}</strong> has invited you to join
                <strong>{team_name}</strong> as <strong>{role}</strong>.</p>
                <p>
                    <a href="{accept_url}"
                       style="background:#10b981;color:#fff;padding:12px 24px;
                              border-radius:8px;text-decoration:none;display:inline-block;">
                        View Invitation
                    </a>
                </p>
                <p>This invitation expires in {settings.INVITATION_EXPIRE_DAYS} days.</p>
                <p>If you did not expect this invitation, you can safely ignore this email.</p>
            """,
        }
        return await self._deliver(params, kind="invitation")

    async def send_verification_email(
        self,
        *,
        to_email: str,
        display_name: str,
        verification_token: str,
    ) -> str | None:
        """
        Deliver the email verification link sent on registration.

        Raises:
            NotificationError: If the provider call fails.
        """
        verify_url = f"{settings.API_BASE_URL}/api/v1/auth/verify-email?token={verification_token}"

        params: resend.Emails.SendParams = {
            "from": settings.EMAIL_FROM,
            "to": [to_email],
            "subject": "Confirm your email address for TeamCal",
            "html": f"""
                <h2>Hi {display_name},</h2>
                <p>Thanks for signing up for TeamCal. Confirm your email address to get started.</p>
                <p>
                    <a href="{verify_url}"
                       style="background:#10b981;color:#fff;padding:12px 24px;
                              border-radius:8px;text-decoration:none;display:inline-block;">
                        Verify Email
                    </a>
                </p>
                <p>If the button does not work, paste this link into your browser:<br>
                <a href="{verify_url}">{verify_url}</a></p>
                <p>This link expires in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.</p>
            """,
        }
        return await self._deliver(params, kind="verification")

    def notify_invitation_accepted(
        self,
        *,
        to_email: str,
        member_name: str,
        team_name: str,
    ) -> None:
        """Queue a courtesy notice to the inviter. Failures are logged only."""
        from app.workers.email_tasks import send_invitation_accepted_email

        try:
            send_invitation_accepted_email.delay(
                to_email=to_email,
                member_name=member_name,
                team_name=team_name,
            )
        except Exception:
            logger.warning(
                "Could not queue acceptance notice to %s", to_email, exc_info=True
            )

    def notify_welcome(self, *, to_email: str, display_name: str) -> None:
        """Queue the welcome email sent after verification. Failures are logged only."""
        from app.workers.email_tasks import send_welcome_email

        try:
            send_welcome_email.delay(to_email=to_email, display_name=display_name)
        except Exception:
            logger.warning("Could not queue welcome email to %s", to_email, exc_info=True)

    async def _deliver(self, params: resend.Emails.SendParams, *, kind: str) -> str | None:
        to_email = params["to"][0]
        if not settings.RESEND_API_KEY and settings.ENVIRONMENT == "development":
            logger.warning("RESEND_API_KEY not set; skipping %s email to %s", kind, to_email)
            return None

        resend.api_key = settings.RESEND_API_KEY
        try:
            response = await asyncio.to_thread(resend.Emails.send, params)
        except Exception as exc:
            logger.error("%s email to %s failed: %s", kind.capitalize(), to_email, exc)
            raise NotificationError(
                "EMAIL_DELIVERY_FAILED", f"The {kind} email could not be sent"
            ) from exc

        return response["id"]
