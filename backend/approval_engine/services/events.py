"""Fire-and-forget lifecycle events for the notification layer.

Events are published after the transition has committed. Delivery goes
through the Celery broker to whichever worker consumes
``EVENT_TASK_NAME``; this service never waits for it. When EVENTS_ENABLED is
False (dev/test) events are only logged. A publishing failure is logged and
swallowed: the transition it describes has already happened.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from approval_engine.core.config import settings

logger = logging.getLogger(__name__)

ITEM_SUBMITTED = "item_submitted"
ITEM_STATUS_CHANGED = "item_status_changed"
ITEM_EXPIRED = "item_expired"

EVENT_TASK_NAME = "notifications.approval_event"
EVENT_QUEUE = "approval_events"


def publish(event: str, payload: dict[str, Any]) -> None:
    message = {
        "event": event,
        "event_id": str(uuid.uuid4()),
        "emitted_at": datetime.now(timezone.utc).isoformat(),
        **payload,
    }

    if not settings.EVENTS_ENABLED:
        logger.info("Event (not published, EVENTS_ENABLED=False): %s %s", event, payload)
        return

    try:
        from approval_engine.workers.celery_app import celery_app

        celery_app.send_task(EVENT_TASK_NAME, args=[message], queue=EVENT_QUEUE)
        logger.info("Event published: %s item=%s", event, payload.get("item_id"))
    except Exception as exc:
        logger.warning("Event publish failed (continuing): %s %s — %s", event, payload.get("item_id"), exc)


def item_submitted(item) -> None:
    publish(ITEM_SUBMITTED, {
        "item_id": str(item.id),
        "client_id": str(item.client_id) if item.client_id else None,
        "item_type": item.item_type,
        "status": item.status,
        "priority": item.priority,
        "submitted_by": str(item.submitted_by) if item.submitted_by else None,
    })


def item_status_changed(item, old_status: str, new_status: str) -> None:
    publish(ITEM_STATUS_CHANGED, {
        "item_id": str(item.id),
        "client_id": str(item.client_id) if item.client_id else None,
        "old": old_status,
        "new": new_status,
        "current_step": item.current_step,
        "total_steps": item.total_steps,
    })


def item_expired(item) -> None:
    publish(ITEM_EXPIRED, {
        "item_id": str(item.id),
        "client_id": str(item.client_id) if item.client_id else None,
        "due_date": item.due_date.isoformat() if item.due_date else None,
    })
