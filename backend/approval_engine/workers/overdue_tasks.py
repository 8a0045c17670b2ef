"""Celery task for the periodic overdue sweep."""
import logging

from approval_engine.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="approval_engine.workers.overdue_tasks.expire_overdue_items")
def expire_overdue_items() -> dict:
    """Expire every pending/in_review item whose due date has passed.

    Runs every OVERDUE_SCAN_INTERVAL_MINUTES. Safe to overlap with itself and
    with live decisions: each expiry is a version-checked write.
    """
    logger.info("expire_overdue_items: starting sweep")
    from approval_engine.db.session import SessionLocal
    from approval_engine.services.overdue import expire_overdue

    with SessionLocal() as db:
        expired = expire_overdue(db)

    return {"expired": len(expired), "item_ids": [str(i) for i in expired]}
