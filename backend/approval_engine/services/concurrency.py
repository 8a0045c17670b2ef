"""Optimistic concurrency for approval items.

Every writer of ``approval_items`` (decisions, cancellation, the overdue
sweep) goes through ``compare_and_set``: the UPDATE only lands if
``decision_version`` still holds the value the writer read. A writer that
loses the race rolls back its whole transaction (including any decision row
it inserted) and starts over from a fresh read via ``run_versioned``.
"""
import logging
import uuid
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from approval_engine.core.config import settings
from approval_engine.core.exceptions import ConcurrentModificationError, NotFoundError
from approval_engine.db.base import utcnow
from approval_engine.db.retry import with_db_retry
from approval_engine.models.approval import ApprovalItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VersionConflict(Exception):
    """The row changed between read and conditional write."""

    def __init__(self, item_id: uuid.UUID, expected_version: int):
        super().__init__(f"approval item {item_id} is no longer at version {expected_version}")
        self.item_id = item_id
        self.expected_version = expected_version


def load_item(db: Session, item_id: uuid.UUID) -> ApprovalItem:
    """Read an item straight from the database, overwriting any cached copy."""
    item = db.execute(
        select(ApprovalItem)
        .where(ApprovalItem.id == item_id)
        .execution_options(populate_existing=True)
    ).scalars().first()
    if item is None:
        raise NotFoundError("Approval item", item_id)
    return item


def compare_and_set(db: Session, item: ApprovalItem, expected_version: int, **values) -> None:
    """Conditionally write ``values`` and bump ``decision_version``.

    Raises:
        VersionConflict: another writer committed first.
    """
    values["decision_version"] = expected_version + 1
    values["updated_at"] = utcnow()

    result = db.execute(
        update(ApprovalItem)
        .where(
            ApprovalItem.id == item.id,
            ApprovalItem.decision_version == expected_version,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise VersionConflict(item.id, expected_version)

    for key, value in values.items():
        set_committed_value(item, key, value)


def run_versioned(
    db: Session,
    item_id: uuid.UUID,
    attempt: Callable[[], T],
    *,
    label: str,
    max_attempts: int | None = None,
) -> T:
    """Run ``attempt`` and commit, retrying from scratch on version conflicts.

    ``attempt`` must re-read the item itself (``load_item``) and perform its
    write through ``compare_and_set``. Transient database errors are retried
    separately by ``with_db_retry``.

    Raises:
        ConcurrentModificationError: still conflicting after ``max_attempts``.
    """
    max_attempts = max_attempts or settings.DECISION_MAX_ATTEMPTS

    def _attempt_and_commit() -> T:
        result = attempt()
        db.commit()
        return result

    for n in range(1, max_attempts + 1):
        try:
            return with_db_retry(db, _attempt_and_commit, label=label)
        except VersionConflict as exc:
            db.rollback()
            logger.info(
                "%s: version conflict on item %s at v%d (attempt %d/%d)",
                label, item_id, exc.expected_version, n, max_attempts,
            )
        except Exception:
            db.rollback()
            raise

    logger.warning("%s: giving up on item %s after %d conflicts", label, item_id, max_attempts)
    raise ConcurrentModificationError(item_id, max_attempts)
