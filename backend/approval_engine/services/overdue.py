"""Overdue sweep: expire open items whose due date has passed.

Uses the same version-checked write as the decision processor, so a human
decision racing the sweep is never silently lost: whichever write commits
first wins, and the other side re-reads, sees a terminal status and stops.
"""
import logging
import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_engine.core.exceptions import ConcurrentModificationError
from approval_engine.db.base import utcnow
from approval_engine.models.approval import OPEN_STATUSES, ApprovalItem, ItemStatus
from approval_engine.services import audit as audit_svc
from approval_engine.services import events
from approval_engine.services.concurrency import compare_and_set, load_item, run_versioned

logger = logging.getLogger(__name__)


def find_overdue_ids(db: Session, now: datetime | None = None) -> list[uuid.UUID]:
    now = now or utcnow()
    stmt = (
        select(ApprovalItem.id)
        .where(
            ApprovalItem.status.in_(list(OPEN_STATUSES)),
            ApprovalItem.due_date.isnot(None),
            ApprovalItem.due_date < now,
        )
        .order_by(ApprovalItem.due_date.asc())
    )
    return list(db.execute(stmt).scalars().all())


def expire_item(db: Session, item_id: uuid.UUID, now: datetime | None = None) -> ApprovalItem | None:
    """Move one overdue item to ``expired``.

    Returns the expired item, or None if it was already terminal (someone
    else finalized it first) by the time the write was attempted.
    """
    now = now or utcnow()

    def attempt() -> tuple[ApprovalItem, str] | None:
        item = load_item(db, item_id)
        if item.is_terminal:
            return None

        old_status = item.status
        seen_version = item.decision_version
        compare_and_set(
            db, item, seen_version,
            status=ItemStatus.expired.value,
            decided_at=now,
        )
        audit_svc.log(
            db=db,
            action="approval_item.expired",
            entity_type="approval_item",
            entity_id=item.id,
            actor_id=None,
            client_id=item.client_id,
            before={"status": old_status, "version": seen_version},
            after={"status": item.status, "version": item.decision_version, "due_date": item.due_date},
            notes="Due date passed while awaiting approval",
        )
        return item, old_status

    result = run_versioned(db, item_id, attempt, label="expire")
    if result is None:
        logger.info("expire_item: item %s already finalized, skipping", item_id)
        return None

    item, old_status = result
    logger.info("Approval item expired: id=%s (was %s, due %s)", item.id, old_status, item.due_date)
    events.item_status_changed(item, old_status, item.status)
    events.item_expired(item)
    return item


def expire_overdue(db: Session, now: datetime | None = None) -> list[uuid.UUID]:
    """Sweep every open item past its due date. Returns the ids that expired."""
    now = now or utcnow()
    expired: list[uuid.UUID] = []
    stats = {"candidates": 0, "expired": 0, "skipped": 0, "conflicts": 0}

    for item_id in find_overdue_ids(db, now):
        stats["candidates"] += 1
        try:
            item = expire_item(db, item_id, now)
        except ConcurrentModificationError:
            # Picked up again on the next sweep.
            stats["conflicts"] += 1
            logger.warning("expire_overdue: item %s kept changing, leaving for next sweep", item_id)
            continue
        if item is None:
            stats["skipped"] += 1
        else:
            stats["expired"] += 1
            expired.append(item.id)

    logger.info(
        "expire_overdue: complete — candidates=%d expired=%d skipped=%d conflicts=%d",
        stats["candidates"], stats["expired"], stats["skipped"], stats["conflicts"],
    )
    return expired
