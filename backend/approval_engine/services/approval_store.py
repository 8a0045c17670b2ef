"""Approval item store: submission, cancellation and the read paths.

Every list read is ordered by priority (urgent first) and then by
submission time, oldest first — dashboards depend on that order.
"""
import logging
import uuid
from collections.abc import Collection
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import case, or_, select
from sqlalchemy.orm import Session

from approval_engine.core.config import settings
from approval_engine.core.exceptions import (
    AlreadyFinalizedError,
    InvalidTransitionError,
    InvalidWorkflowError,
    NotAuthorizedError,
    NotFoundError,
)
from approval_engine.db.base import utcnow
from approval_engine.db.retry import with_db_retry
from approval_engine.models.approval import (
    OPEN_STATUSES,
    PRIORITY_RANK,
    SYSTEM_ACTOR_ID,
    ApprovalDecision,
    ApprovalItem,
    DecisionType,
    ItemStatus,
    Priority,
)
from approval_engine.services import audit as audit_svc
from approval_engine.services import events
from approval_engine.services import workflow_registry
from approval_engine.services.concurrency import compare_and_set, load_item, run_versioned
from approval_engine.services.decision import can_decide

logger = logging.getLogger(__name__)


# ─── Submit ───

def submit_item(
    db: Session,
    *,
    title: str,
    submitted_by: uuid.UUID | None,
    item_type: str = "general",
    client_id: uuid.UUID | None = None,
    item_id: str | None = None,
    description: str | None = None,
    priority: Priority | str = Priority.medium,
    due_date: datetime | None = None,
    data: dict | None = None,
    workflow_id: uuid.UUID | None = None,
) -> ApprovalItem:
    """Create an ApprovalItem under the applicable workflow.

    The workflow's steps (and their effective quorum) are frozen onto the
    item, so later edits to the workflow never change it. When the workflow
    has an auto-approve threshold and ``data["value"]`` is strictly below it,
    the item is created already approved with no human step and a system
    decision is recorded for the audit trail.

    Raises:
        NotFoundError: ``workflow_id`` does not exist.
        InvalidWorkflowError: the workflow is inactive or belongs to another client.
    """
    priority = Priority(priority).value
    data = dict(data or {})

    def _submit() -> ApprovalItem:
        if workflow_id is not None:
            workflow = workflow_registry.get_workflow(db, workflow_id)
            if not workflow.is_active:
                raise InvalidWorkflowError(f"Workflow {workflow.id} is inactive and cannot take new submissions.")
            if workflow.client_id is not None and workflow.client_id != client_id:
                raise InvalidWorkflowError(f"Workflow {workflow.id} belongs to a different client.")
        else:
            workflow = workflow_registry.resolve(db, client_id, item_type)

        steps = workflow_registry.steps_of(workflow)
        now = utcnow()
        auto_approved = _below_threshold(data, workflow.auto_approve_threshold)

        item = ApprovalItem(
            workflow_id=workflow.id,
            workflow_version=workflow.version if not workflow.is_synthetic else None,
            client_id=client_id,
            item_type=item_type or "general",
            item_id=item_id,
            title=title,
            description=description,
            data=data,
            priority=priority,
            due_date=due_date,
            submitted_by=submitted_by,
            submitted_at=now,
            decision_version=0,
        )
        if auto_approved:
            item.status = ItemStatus.approved.value
            item.current_step = 0
            item.total_steps = 0
            item.steps_snapshot = []
            item.decided_at = now
        else:
            item.status = ItemStatus.pending.value
            item.current_step = 1
            item.total_steps = len(steps)
            item.steps_snapshot = [s.snapshot(workflow.require_all_approvers) for s in steps]
        db.add(item)
        db.flush()

        if auto_approved:
            db.add(ApprovalDecision(
                approval_item_id=item.id,
                step_number=0,
                approver_id=SYSTEM_ACTOR_ID,
                decision=DecisionType.approved.value,
                comments=(
                    f"Auto-approved: value {data.get('value')} is below the "
                    f"threshold {workflow.auto_approve_threshold}."
                ),
                decided_at=now,
            ))
            db.flush()

        audit_svc.log(
            db=db,
            action="approval_item.auto_approved" if auto_approved else "approval_item.submitted",
            entity_type="approval_item",
            entity_id=item.id,
            actor_id=submitted_by,
            client_id=client_id,
            after={
                "status": item.status,
                "workflow_id": item.workflow_id,
                "workflow_version": item.workflow_version,
                "total_steps": item.total_steps,
                "item_type": item.item_type,
                "item_id": item.item_id,
            },
        )
        db.commit()
        return item

    item = with_db_retry(db, _submit, label="submit")

    logger.info(
        "Approval item submitted: id=%s type=%s client=%s workflow=%s status=%s steps=%d",
        item.id, item.item_type, client_id, item.workflow_id, item.status, item.total_steps,
    )
    events.item_submitted(item)
    return item


def _below_threshold(data: dict, threshold) -> bool:
    """Strict less-than between the declared ``data["value"]`` and the threshold."""
    if threshold is None:
        return False
    value = data.get("value")
    if value is None or isinstance(value, bool):
        return False
    try:
        declared = Decimal(str(value))
    except InvalidOperation:
        return False
    if not declared.is_finite():
        return False
    return declared < Decimal(str(threshold))


# ─── Reads ───

def get_item(db: Session, item_id: uuid.UUID) -> ApprovalItem:
    item = db.execute(
        select(ApprovalItem).where(ApprovalItem.id == item_id)
    ).scalars().first()
    if item is None:
        raise NotFoundError("Approval item", item_id)
    return item


def _ordered(stmt):
    priority_rank = case(PRIORITY_RANK, value=ApprovalItem.priority, else_=0)
    return stmt.order_by(
        priority_rank.desc(),
        ApprovalItem.submitted_at.asc(),
        ApprovalItem.id.asc(),
    )


def _scoped(stmt, client_id: uuid.UUID | None, visible_client_ids: Collection[uuid.UUID] | None):
    if client_id is not None:
        stmt = stmt.where(ApprovalItem.client_id == client_id)
    if visible_client_ids is not None:
        stmt = stmt.where(or_(
            ApprovalItem.client_id.is_(None),
            ApprovalItem.client_id.in_(list(visible_client_ids)),
        ))
    return stmt


def list_pending(
    db: Session,
    client_id: uuid.UUID | None = None,
    visible_client_ids: Collection[uuid.UUID] | None = None,
    limit: int | None = None,
) -> list[ApprovalItem]:
    """Items still awaiting action (pending or in_review).

    ``visible_client_ids`` restricts results to those tenants (plus global
    items); None means unrestricted. Without ``limit`` every open item is
    returned; with it the result is capped at LIST_MAX_LIMIT.
    """
    stmt = select(ApprovalItem).where(ApprovalItem.status.in_(list(OPEN_STATUSES)))
    stmt = _ordered(_scoped(stmt, client_id, visible_client_ids))
    if limit is not None:
        stmt = stmt.limit(min(limit, settings.LIST_MAX_LIMIT))
    return list(db.execute(stmt).scalars().all())


def list_all(
    db: Session,
    client_id: uuid.UUID | None = None,
    limit: int | None = None,
    status: ItemStatus | str | None = None,
    visible_client_ids: Collection[uuid.UUID] | None = None,
) -> list[ApprovalItem]:
    limit = min(limit or settings.LIST_DEFAULT_LIMIT, settings.LIST_MAX_LIMIT)
    stmt = select(ApprovalItem)
    if status is not None:
        stmt = stmt.where(ApprovalItem.status == ItemStatus(status).value)
    stmt = _ordered(_scoped(stmt, client_id, visible_client_ids)).limit(limit)
    return list(db.execute(stmt).scalars().all())


def list_decisions(db: Session, item_id: uuid.UUID) -> list[ApprovalDecision]:
    """Decision trail of one item, oldest first."""
    get_item(db, item_id)
    stmt = (
        select(ApprovalDecision)
        .where(ApprovalDecision.approval_item_id == item_id)
        .order_by(ApprovalDecision.decided_at.asc(), ApprovalDecision.step_number.asc())
    )
    return list(db.execute(stmt).scalars().all())


def list_awaiting(
    db: Session,
    approver_id: uuid.UUID,
    client_id: uuid.UUID | None = None,
    visible_client_ids: Collection[uuid.UUID] | None = None,
    ad_hoc_reviewer: bool = False,
) -> list[ApprovalItem]:
    """Open items whose current step still needs a vote from ``approver_id``."""
    candidates = [
        item for item in list_pending(db, client_id, visible_client_ids)
        if can_decide(item, approver_id, ad_hoc_reviewer)
    ]
    if not candidates:
        return []

    rows = db.execute(
        select(ApprovalDecision.approval_item_id, ApprovalDecision.step_number).where(
            ApprovalDecision.approver_id == approver_id,
            ApprovalDecision.approval_item_id.in_([i.id for i in candidates]),
        )
    )
    voted = {(r.approval_item_id, r.step_number) for r in rows}
    return [i for i in candidates if (i.id, i.current_step) not in voted]


# ─── Cancel ───

def cancel_item(
    db: Session,
    item_id: uuid.UUID,
    actor_id: uuid.UUID,
    *,
    is_admin: bool = False,
) -> ApprovalItem:
    """Withdraw an open item. Only its submitter or an admin may cancel.

    Raises:
        InvalidTransitionError: the item was already terminal when read.
        AlreadyFinalizedError: a concurrent write finalized the item first.
        NotAuthorizedError: caller is neither the submitter nor an admin.
    """
    state = {"attempts": 0}

    def attempt() -> tuple[ApprovalItem, str]:
        state["attempts"] += 1
        item = load_item(db, item_id)
        if not is_admin and item.submitted_by != actor_id:
            raise NotAuthorizedError(f"Only the submitter or an admin can cancel item {item.id}.")
        if item.is_terminal:
            if state["attempts"] > 1:
                raise AlreadyFinalizedError(item.id, item.status)
            raise InvalidTransitionError(
                f"Cannot cancel item {item.id}: it is already {item.status}.",
                from_status=item.status,
                to_status=ItemStatus.cancelled.value,
            )

        old_status = item.status
        seen_version = item.decision_version
        compare_and_set(
            db, item, seen_version,
            status=ItemStatus.cancelled.value,
            decided_at=utcnow(),
        )
        audit_svc.log(
            db=db,
            action="approval_item.cancelled",
            entity_type="approval_item",
            entity_id=item.id,
            actor_id=actor_id,
            client_id=item.client_id,
            before={"status": old_status, "version": seen_version},
            after={"status": item.status, "version": item.decision_version},
        )
        return item, old_status

    item, old_status = run_versioned(db, item_id, attempt, label="cancel")

    logger.info("Approval item cancelled: id=%s by=%s (was %s)", item.id, actor_id, old_status)
    events.item_status_changed(item, old_status, item.status)
    return item
