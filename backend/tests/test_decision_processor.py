"""Tests for the decision processor state machine.

Covers the pure transition rule, the multi-step quorum scenario, veto,
request-changes, duplicate and unauthorized votes, and recovery from a
concurrent write that lands between read and conditional update.
"""
import uuid

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from approval_engine.core.exceptions import (
    AlreadyFinalizedError,
    ConcurrentModificationError,
    DuplicateDecisionError,
    InvalidTransitionError,
    NotAuthorizedError,
)
from approval_engine.models.approval import ApprovalDecision, ApprovalItem, DecisionType
from approval_engine.models.audit import AuditLog
from approval_engine.services import approval_store, concurrency, decision, workflow_registry
from approval_engine.services.decision import evaluate_transition


# ─── Pure transition rule ─────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "step,total,kind,approvals,quorum,expected",
    [
        (1, 2, DecisionType.approved, 1, 2, ("in_review", 1)),
        (1, 2, DecisionType.approved, 2, 2, ("pending", 2)),
        (2, 2, DecisionType.approved, 1, 1, ("approved", 2)),
        (1, 3, DecisionType.rejected, 0, 1, ("rejected", 1)),
        (2, 2, DecisionType.rejected, 5, 2, ("rejected", 2)),
        (1, 2, DecisionType.request_changes, 1, 2, ("pending", 1)),
    ],
)
def test_evaluate_transition(step, total, kind, approvals, quorum, expected):
    result = evaluate_transition(step, total, kind, approvals, quorum)
    assert (result.status, result.current_step) == expected


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def people():
    return {
        "manager": uuid.uuid4(),
        "finance": [uuid.uuid4() for _ in range(3)],
        "submitter": uuid.uuid4(),
    }


@pytest.fixture
def two_step_item(db, people):
    """Step 1: manager alone. Step 2: two of three finance approvers."""
    workflow_registry.create_workflow(
        db,
        name="Expense approval",
        workflow_type="expense",
        steps=[
            {"step_number": 1, "name": "Manager", "approvers": [people["manager"]]},
            {"step_number": 2, "name": "Finance", "approvers": people["finance"], "required_approvals": 2},
        ],
    )
    return approval_store.submit_item(
        db, title="Conference trip", submitted_by=people["submitter"], item_type="expense",
        data={"value": 4200},
    )


# ─── Happy path ───────────────────────────────────────────────────────────────

def test_two_step_quorum_walkthrough(db, people, two_step_item):
    f1, f2, f3 = people["finance"]
    item_id = two_step_item.id

    item = decision.decide(db, item_id, people["manager"], "approved")
    assert (item.status, item.current_step) == ("pending", 2)

    item = decision.decide(db, item_id, f1, "approved")
    assert (item.status, item.current_step) == ("in_review", 2)
    assert item.decided_at is None

    item = decision.decide(db, item_id, f2, "approved")
    assert (item.status, item.current_step) == ("approved", 2)
    assert item.decided_at is not None
    assert item.decision_version == 3

    # The third finance approver is too late.
    with pytest.raises(AlreadyFinalizedError):
        decision.decide(db, item_id, f3, "approved")

    rows = db.query(ApprovalDecision).filter_by(approval_item_id=item_id).all()
    assert sorted((r.step_number, r.decision) for r in rows) == [
        (1, "approved"), (2, "approved"), (2, "approved"),
    ]


def test_each_decision_writes_audit_entry(db, people, two_step_item):
    decision.decide(db, two_step_item.id, people["manager"], "approved")
    decision.decide(db, two_step_item.id, people["finance"][0], "approved", comments="ok by me")

    entries = (
        db.query(AuditLog)
        .filter_by(entity_id=two_step_item.id)
        .order_by(AuditLog.created_at)
        .all()
    )
    actions = [e.action for e in entries]
    assert actions.count("approval_item.decision_approved") == 2
    assert entries[-1].notes == "ok by me"
    assert '"step_quorum": 2' in entries[-1].after_state


# ─── Veto / request changes ───────────────────────────────────────────────────

def test_single_rejection_vetoes_whole_item(db, people, two_step_item):
    decision.decide(db, two_step_item.id, people["manager"], "approved")
    decision.decide(db, two_step_item.id, people["finance"][0], "approved")

    item = decision.decide(db, two_step_item.id, people["finance"][1], "rejected", comments="too pricey")
    assert item.status == "rejected"
    assert item.decided_at is not None

    with pytest.raises(AlreadyFinalizedError):
        decision.decide(db, two_step_item.id, people["finance"][2], "approved")


def test_request_changes_keeps_step_and_returns_to_pending(db, people, two_step_item):
    decision.decide(db, two_step_item.id, people["manager"], "approved")
    decision.decide(db, two_step_item.id, people["finance"][0], "approved")

    item = decision.decide(db, two_step_item.id, people["finance"][1], "request_changes")
    assert (item.status, item.current_step) == ("pending", 2)
    assert not item.is_terminal

    # Earlier approvals on the step still count toward quorum.
    item = decision.decide(db, two_step_item.id, people["finance"][2], "approved")
    assert item.status == "approved"


# ─── Refusals ─────────────────────────────────────────────────────────────────

def test_duplicate_vote_on_same_step_rejected(db, people, two_step_item):
    decision.decide(db, two_step_item.id, people["manager"], "approved")
    f1 = people["finance"][0]
    decision.decide(db, two_step_item.id, f1, "approved")

    with pytest.raises(DuplicateDecisionError):
        decision.decide(db, two_step_item.id, f1, "approved")

    item = approval_store.get_item(db, two_step_item.id)
    assert (item.status, item.current_step, item.decision_version) == ("in_review", 2, 2)


def test_approver_of_later_step_cannot_vote_early(db, people, two_step_item):
    with pytest.raises(NotAuthorizedError):
        decision.decide(db, two_step_item.id, people["finance"][0], "approved")

    assert db.query(ApprovalDecision).filter_by(approval_item_id=two_step_item.id).count() == 0


def test_unknown_decision_value_rejected(db, people, two_step_item):
    with pytest.raises(InvalidTransitionError, match="Unknown decision"):
        decision.decide(db, two_step_item.id, people["manager"], "maybe")


def test_decision_for_stale_step_refused(db, people, two_step_item):
    decision.decide(db, two_step_item.id, people["manager"], "approved")

    with pytest.raises(InvalidTransitionError, match="moved from step 1 to step 2"):
        decision.decide(db, two_step_item.id, people["finance"][0], "approved", expected_step=1)


def test_ad_hoc_item_needs_reviewer_role(db):
    item = approval_store.submit_item(db, title="Direct", submitted_by=uuid.uuid4())
    reviewer = uuid.uuid4()

    with pytest.raises(NotAuthorizedError):
        decision.decide(db, item.id, reviewer, "approved")

    done = decision.decide(db, item.id, reviewer, "approved", ad_hoc_reviewer=True)
    assert done.status == "approved"


def test_step_and_version_never_move_backwards(db, people, two_step_item):
    seen = [(two_step_item.current_step, two_step_item.decision_version)]
    for approver, kind in [
        (people["manager"], "approved"),
        (people["finance"][0], "request_changes"),
        (people["finance"][1], "approved"),
        (people["finance"][2], "approved"),
    ]:
        item = decision.decide(db, two_step_item.id, approver, kind)
        seen.append((item.current_step, item.decision_version))

    steps = [s for s, _ in seen]
    versions = [v for _, v in seen]
    assert steps == sorted(steps)
    assert versions == sorted(set(versions))


# ─── Concurrent writer between read and write ─────────────────────────────────

def _bump_version_from_other_session(engine, item_id):
    with Session(engine) as other:
        other.execute(
            update(ApprovalItem)
            .where(ApprovalItem.id == item_id)
            .values(decision_version=ApprovalItem.decision_version + 1)
        )
        other.commit()


def test_version_conflict_replays_against_fresh_state(file_engine, monkeypatch, people):
    db = Session(file_engine, expire_on_commit=False, autoflush=False)
    try:
        workflow_registry.create_workflow(
            db,
            name="One step",
            steps=[{"step_number": 1, "approvers": people["finance"], "required_approvals": 2}],
        )
        item = approval_store.submit_item(db, title="Raced", submitted_by=people["submitter"])

        real_load = concurrency.load_item
        calls = {"n": 0}

        def racing_load(session, item_id):
            loaded = real_load(session, item_id)
            calls["n"] += 1
            if calls["n"] == 1:
                _bump_version_from_other_session(file_engine, item_id)
            return loaded

        monkeypatch.setattr(decision, "load_item", racing_load)

        result = decision.decide(db, item.id, people["finance"][0], "approved")

        assert calls["n"] == 2
        assert result.status == "in_review"
        # 1 from the interfering writer + 1 from the replayed decision.
        assert result.decision_version == 2
        votes = db.query(ApprovalDecision).filter_by(approval_item_id=item.id).all()
        assert len(votes) == 1
    finally:
        db.close()


def test_persistent_conflict_gives_up(db, monkeypatch, people, two_step_item):
    real_cas = concurrency.compare_and_set

    def always_stale(session, item, expected_version, **values):
        session.execute(
            update(ApprovalItem)
            .where(ApprovalItem.id == item.id)
            .values(decision_version=ApprovalItem.decision_version + 1)
            .execution_options(synchronize_session=False)
        )
        return real_cas(session, item, expected_version, **values)

    monkeypatch.setattr(decision, "compare_and_set", always_stale)

    with pytest.raises(ConcurrentModificationError) as exc_info:
        decision.decide(db, two_step_item.id, people["manager"], "approved")
    assert exc_info.value.attempts == 3

    # Every losing attempt was rolled back, decision row included.
    item = approval_store.get_item(db, two_step_item.id)
    assert (item.status, item.current_step, item.decision_version) == ("pending", 1, 0)
    assert db.query(ApprovalDecision).filter_by(approval_item_id=two_step_item.id).count() == 0
