"""
Invitation maintenance tasks.

Runs the expiry sweep in its own session on the Celery beat schedule.
"""

from __future__ import annotations

import asyncio
import logging

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.invitation_tasks.cleanup_expired_invitations")
def cleanup_expired_invitations() -> dict[str, int]:
    """
    Mark pending invitations past expiry as expired.

    Errors propagate and fail the task; request handling is unaffected.
    """
    # Fresh loop per run: forked workers may inherit a closed one
    loop = asyncio.new_event_loop()
    try:
        expired = loop.run_until_complete(_run_sweep())
    finally:
        loop.close()
    return {"expired": expired}


async def _run_sweep() -> int:
    from app.core.database import async_engine, session_scope
    from app.services.invitation_service import InvitationService

    try:
        async with session_scope() as session:
            return await InvitationService(db=session).cleanup_expired_invitations()
    finally:
        # Pooled connections are bound to the loop that opened them
        await async_engine.dispose()
