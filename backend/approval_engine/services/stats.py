"""Dashboard counts, recomputed from approval_items on every call."""
import uuid
from collections.abc import Collection
from datetime import datetime

from sqlalchemy import and_, case, func, or_, select, true
from sqlalchemy.orm import Session

from approval_engine.db.base import utcnow
from approval_engine.models.approval import OPEN_STATUSES, ApprovalItem, ItemStatus, Priority


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def get_stats(
    db: Session,
    client_id: uuid.UUID | None = None,
    since: datetime | None = None,
    visible_client_ids: Collection[uuid.UUID] | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    """Counts of pending, in_review, approved, rejected, cancelled, expired,
    urgent (urgent and still open) and overdue (open, past due, not yet swept).

    ``since`` windows the approved/rejected counts by ``decided_at``.
    """
    now = now or utcnow()
    status = ApprovalItem.status
    is_open = status.in_(list(OPEN_STATUSES))
    decided_in_window = ApprovalItem.decided_at >= since if since is not None else true()

    stmt = select(
        _count_where(status == ItemStatus.pending.value).label("pending"),
        _count_where(status == ItemStatus.in_review.value).label("in_review"),
        _count_where(and_(status == ItemStatus.approved.value, decided_in_window)).label("approved"),
        _count_where(and_(status == ItemStatus.rejected.value, decided_in_window)).label("rejected"),
        _count_where(status == ItemStatus.cancelled.value).label("cancelled"),
        _count_where(status == ItemStatus.expired.value).label("expired"),
        _count_where(and_(is_open, ApprovalItem.priority == Priority.urgent.value)).label("urgent"),
        _count_where(and_(
            is_open, ApprovalItem.due_date.isnot(None), ApprovalItem.due_date < now,
        )).label("overdue"),
    )
    if client_id is not None:
        stmt = stmt.where(ApprovalItem.client_id == client_id)
    if visible_client_ids is not None:
        stmt = stmt.where(or_(
            ApprovalItem.client_id.is_(None),
            ApprovalItem.client_id.in_(list(visible_client_ids)),
        ))

    row = db.execute(stmt).mappings().one()
    return {key: int(value or 0) for key, value in row.items()}
