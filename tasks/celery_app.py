"""
tasks/celery_app.py
Celery application instance shared across task modules.

Workers are started with:
    celery -A tasks.celery_app worker -Q notifications --loglevel=info
"""

from celery import Celery

from config.settings import settings

celery_app = Celery(
    "service_booking",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tasks.notification_tasks"],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Acknowledge after execution so a dying worker does not lose the event
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
    task_max_retries=3,

    task_annotations={
        "tasks.notification_tasks.dispatch_event": {"rate_limit": "30/s"},
    },
    task_routes={
        "tasks.notification_tasks.*": {"queue": "notifications"},
    },
    worker_prefetch_multiplier=1,
)
