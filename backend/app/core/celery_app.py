"""Celery application configuration."""

from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "membership_billing",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=900,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "membership-generate-due-invoices": {
            "task": "membership.generate_due_invoices",
            "schedule": 24 * 60 * 60,
        },
    },
)

celery_app.autodiscover_tasks(["app.modules.membership"])
