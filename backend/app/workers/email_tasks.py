"""
Email background tasks.

Courtesy notices sent after a state transition has already committed.
"""

import logging

import resend

from app.core.config import settings
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="app.workers.email_tasks.send_invitation_accepted_email",
    bind=True,
    max_retries=3,
)
def send_invitation_accepted_email(
    self,  # type: ignore[no-untyped-def]
    to_email: str,
    member_name: str,
    team_name: str,
) -> dict[str, str]:
    """
    Tell the inviter that their invitation was accepted.

    Args:
        to_email: Inviter's email address.
        member_name: Display name of the user who joined.
        team_name: Team display name.

    Returns:
        Dict with status and message_id.
    """
    try:
        resend.api_key = settings.RESEND_API_KEY

        params: resend.Emails.SendParams = {
            "from": settings.EMAIL_FROM,
            "to": [to_email],
            "subject": f"{member_name} joined {team_name}",
            "html": f"""
                <h2>Your invitation was accepted</h2>
                <p><strong>{member_name}</strong> has joined
                <strong>{team_name}</strong>.</p>
                <p>
                    <a href="{settings.FRONTEND_URL}"
                       style="background:#10b981;color:#fff;padding:12px 24px;
                              border-radius:8px;text-decoration:none;display:inline-block;">
                        Open TeamCal
                    </a>
                </p>
            """,
        }

        response = resend.Emails.send(params)
        return {"status": "sent", "message_id": response["id"]}

    except Exception as exc:
        logger.warning("send_invitation_accepted_email to %s failed: %s", to_email, exc)
        raise self.retry(exc=exc, countdown=60 * (self.request.retries + 1))


@celery_app.task(name="app.workers.email_tasks.send_welcome_email")
def send_welcome_email(to_email: str, display_name: str) -> dict[str, str]:
    """
    Welcome a user whose email address was just verified.

    Not critical: delivery failures are logged and the task succeeds.
    """
    resend.api_key = settings.RESEND_API_KEY

    params: resend.Emails.SendParams = {
        "from": settings.EMAIL_FROM,
        "to": [to_email],
        "subject": "Welcome to TeamCal",
        "html": f"""
            <h2>{display_name}, your email is verified!</h2>
            <p>You can now use everything TeamCal offers:</p>
            <ul>
                <li>Personal and team schedules</li>
                <li>Creating teams and inviting members</li>
                <li>Event reminders and sharing</li>
            </ul>
            <p>
                <a href="{settings.FRONTEND_URL}"
                   style="background:#10b981;color:#fff;padding:12px 24px;
                          border-radius:8px;text-decoration:none;display:inline-block;">
                    Get Started
                </a>
            </p>
        """,
    }

    try:
        response = resend.Emails.send(params)
    except Exception as exc:
        logger.warning("send_welcome_email to %s failed: %s", to_email, exc)
        return {"status": "failed"}

    return {"status": "sent", "message_id": response["id"]}
