from celery import Celery
from celery.schedules import crontab

from approval_engine.core.config import settings

celery_app = Celery(
    "approval_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "approval_engine.workers.overdue_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "expire-overdue-approvals": {
        "task": "approval_engine.workers.overdue_tasks.expire_overdue_items",
        "schedule": crontab(minute=f"*/{settings.OVERDUE_SCAN_INTERVAL_MINUTES}"),
    },
}
