"""
Celery application instance.

Configured with Redis broker and backend. Celery beat drives the
invitation expiry sweep.
"""

from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "teamcal",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.email_tasks",
        "app.workers.invitation_tasks",
    ],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Results
    result_expires=3600,
    # Retry policy
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Concurrency
    worker_prefetch_multiplier=1,
    # Routing
    task_default_queue="default",
    task_queues={
        "default": {},
        "email": {},
        "maintenance": {},
    },
    task_routes={
        "app.workers.email_tasks.*": {"queue": "email"},
        "app.workers.invitation_tasks.*": {"queue": "maintenance"},
    },
    # Scheduled jobs
    beat_schedule={
        "cleanup-expired-invitations": {
            "task": "app.workers.invitation_tasks.cleanup_expired_invitations",
            "schedule": settings.INVITATION_SWEEP_INTERVAL_MINUTES * 60,
        },
    },
)
