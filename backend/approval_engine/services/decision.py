"""Decision processor — the approval state machine.

    pending ──► in_review ──► approved | rejected
       │            │
       └────────────┴──► cancelled (external cancel) | expired (overdue sweep)

``pending`` means no decision is recorded yet for the current step;
``in_review`` means at least one approval is recorded but the step's quorum
is not met. Quorum is recomputed from the full decision set of the step on
every call; there is no cached counter to drift.
"""
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approval_engine.core.exceptions import (
    AlreadyFinalizedError,
    DuplicateDecisionError,
    InvalidTransitionError,
    NotAuthorizedError,
)
from approval_engine.db.base import utcnow
from approval_engine.models.approval import (
    TERMINAL_STATUSES,
    ApprovalDecision,
    ApprovalItem,
    DecisionType,
    ItemStatus,
)
from approval_engine.services import audit as audit_svc
from approval_engine.services import events
from approval_engine.services.concurrency import compare_and_set, load_item, run_versioned
from approval_engine.services.workflow_registry import ApprovalStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    status: str
    current_step: int


# ─── Pure transition rule ───

def evaluate_transition(
    current_step: int,
    total_steps: int,
    decision: DecisionType,
    approvals: int,
    quorum: int,
) -> Transition:
    """Next (status, current_step) after ``decision`` on the current step.

    ``approvals`` is the number of distinct approvals recorded for the step,
    including the decision being applied.
    """
    if decision == DecisionType.rejected:
        return Transition(ItemStatus.rejected.value, current_step)
    if decision == DecisionType.request_changes:
        return Transition(ItemStatus.pending.value, current_step)

    if approvals < quorum:
        return Transition(ItemStatus.in_review.value, current_step)
    if current_step >= total_steps:
        return Transition(ItemStatus.approved.value, current_step)
    return Transition(ItemStatus.pending.value, current_step + 1)


# ─── Snapshot helpers ───

def current_step_of(item: ApprovalItem) -> ApprovalStep:
    raw = item.steps_snapshot[item.current_step - 1]
    return ApprovalStep.from_snapshot(raw)


def current_quorum(item: ApprovalItem) -> int:
    raw = item.steps_snapshot[item.current_step - 1]
    return int(raw.get("quorum") or 1)


def can_decide(item: ApprovalItem, approver_id: uuid.UUID, ad_hoc_reviewer: bool = False) -> bool:
    """True if ``approver_id`` may vote on the item's current step."""
    if item.status in TERMINAL_STATUSES or not item.steps_snapshot:
        return False
    step = current_step_of(item)
    if step.is_ad_hoc:
        return ad_hoc_reviewer
    return step.is_approver(approver_id)


def _approvals_for_step(db: Session, item: ApprovalItem, step: ApprovalStep) -> int:
    approver_ids = set(db.execute(
        select(ApprovalDecision.approver_id).where(
            ApprovalDecision.approval_item_id == item.id,
            ApprovalDecision.step_number == step.step_number,
            ApprovalDecision.decision == DecisionType.approved.value,
        )
    ).scalars().all())
    if not step.is_ad_hoc:
        listed = {str(a) for a in step.approvers}
        approver_ids = {a for a in approver_ids if str(a) in listed}
    return len(approver_ids)


# ─── Decide ───

def decide(
    db: Session,
    item_id: uuid.UUID,
    approver_id: uuid.UUID,
    decision: DecisionType | str,
    comments: str | None = None,
    *,
    ad_hoc_reviewer: bool = False,
    expected_step: int | None = None,
) -> ApprovalItem:
    """Record one approver's decision on the item's current step.

    The decision row, the status/step change and the audit entry commit
    together or not at all. The status write is conditioned on the
    ``decision_version`` read at the start; on conflict the whole attempt is
    rolled back and replayed against fresh state.

    Args:
        db: Sync SQLAlchemy session.
        item_id: ApprovalItem to act on.
        approver_id: Authenticated identity casting the vote.
        decision: approved, rejected or request_changes.
        comments: Optional free text stored on the decision.
        ad_hoc_reviewer: Whether the caller holds a role allowed to decide
            steps with no listed approvers (direct-approval items).
        expected_step: Step the approver was looking at. Defaults to the
            step read on the first attempt; if the item has moved past it the
            decision is refused rather than applied to a different step.

    Returns:
        The updated ApprovalItem.

    Raises:
        NotFoundError, AlreadyFinalizedError, NotAuthorizedError,
        DuplicateDecisionError, InvalidTransitionError (step moved on),
        ConcurrentModificationError.
    """
    try:
        decision = DecisionType(decision)
    except ValueError:
        raise InvalidTransitionError(
            f"Unknown decision {decision!r}. Expected one of: "
            + ", ".join(d.value for d in DecisionType)
        )

    seen = {"step": expected_step}

    def attempt() -> tuple[ApprovalItem, str]:
        item = load_item(db, item_id)
        if item.is_terminal:
            raise AlreadyFinalizedError(item.id, item.status)

        # A vote is cast on a specific step; never carry it over to the next one.
        if seen["step"] is None:
            seen["step"] = item.current_step
        elif item.current_step != seen["step"]:
            raise InvalidTransitionError(
                f"Item {item.id} moved from step {seen['step']} to step {item.current_step} "
                "before this decision was applied. Review the item again.",
                from_status=item.status,
            )

        step = current_step_of(item)
        if not can_decide(item, approver_id, ad_hoc_reviewer):
            raise NotAuthorizedError(
                f"{approver_id} is not an approver for step {step.step_number} "
                f"('{step.name}') of item {item.id}."
            )

        already = db.execute(
            select(ApprovalDecision.id).where(
                ApprovalDecision.approval_item_id == item.id,
                ApprovalDecision.step_number == step.step_number,
                ApprovalDecision.approver_id == approver_id,
            )
        ).first()
        if already is not None:
            raise DuplicateDecisionError(item.id, step.step_number, approver_id)

        seen_version = item.decision_version
        old_status = item.status
        now = utcnow()

        db.add(ApprovalDecision(
            approval_item_id=item.id,
            step_number=step.step_number,
            approver_id=approver_id,
            decision=decision.value,
            comments=comments,
            decided_at=now,
        ))
        try:
            db.flush()
        except IntegrityError:
            raise DuplicateDecisionError(item.id, step.step_number, approver_id)

        approvals = _approvals_for_step(db, item, step)
        quorum = current_quorum(item)
        transition = evaluate_transition(
            current_step=item.current_step,
            total_steps=item.total_steps,
            decision=decision,
            approvals=approvals,
            quorum=quorum,
        )

        values = {"status": transition.status, "current_step": transition.current_step}
        if transition.status in TERMINAL_STATUSES:
            values["decided_at"] = now
        compare_and_set(db, item, seen_version, **values)

        audit_svc.log(
            db=db,
            action=f"approval_item.decision_{decision.value}",
            entity_type="approval_item",
            entity_id=item.id,
            actor_id=approver_id,
            client_id=item.client_id,
            before={"status": old_status, "current_step": step.step_number, "version": seen_version},
            after={
                "status": item.status,
                "current_step": item.current_step,
                "version": item.decision_version,
                "step_approvals": approvals,
                "step_quorum": quorum,
            },
            notes=comments,
        )
        return item, old_status

    item, old_status = run_versioned(db, item_id, attempt, label="decide")

    logger.info(
        "Approval decision: item=%s approver=%s decision=%s status=%s->%s step=%d/%d",
        item.id, approver_id, decision.value, old_status, item.status,
        item.current_step, item.total_steps,
    )
    if item.status != old_status:
        events.item_status_changed(item, old_status, item.status)
    return item
