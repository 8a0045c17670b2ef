"""Tests for the overdue sweep."""
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from approval_engine.core.exceptions import AlreadyFinalizedError, ConcurrentModificationError
from approval_engine.models.audit import AuditLog
from approval_engine.services import approval_store, concurrency, decision, overdue, workflow_registry

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def approvers(db):
    a, b = uuid.uuid4(), uuid.uuid4()
    workflow_registry.create_workflow(
        db, name="Pair", steps=[{"step_number": 1, "approvers": [a, b], "required_approvals": 2}],
    )
    return a, b


def _submit(db, title, due):
    return approval_store.submit_item(db, title=title, submitted_by=uuid.uuid4(), due_date=due)


def test_sweep_expires_only_open_past_due_items(db, approvers):
    a, _ = approvers
    late_pending = _submit(db, "late pending", NOW - timedelta(hours=1))
    late_in_review = _submit(db, "late in review", NOW - timedelta(days=2))
    decision.decide(db, late_in_review.id, a, "approved")
    not_due = _submit(db, "not due", NOW + timedelta(hours=1))
    no_due = _submit(db, "no due date", None)
    late_cancelled = _submit(db, "late but cancelled", NOW - timedelta(hours=3))
    approval_store.cancel_item(db, late_cancelled.id, late_cancelled.submitted_by)

    expired = overdue.expire_overdue(db, now=NOW)

    assert set(expired) == {late_pending.id, late_in_review.id}
    for item_id in expired:
        item = approval_store.get_item(db, item_id)
        assert item.status == "expired"
        assert item.decided_at is not None
    assert approval_store.get_item(db, not_due.id).status == "pending"
    assert approval_store.get_item(db, no_due.id).status == "pending"
    assert approval_store.get_item(db, late_cancelled.id).status == "cancelled"

    actions = [e.action for e in db.query(AuditLog).filter_by(entity_id=late_pending.id)]
    assert "approval_item.expired" in actions


def test_second_sweep_is_a_no_op(db, approvers):
    _submit(db, "late", NOW - timedelta(minutes=5))
    assert len(overdue.expire_overdue(db, now=NOW)) == 1
    assert overdue.expire_overdue(db, now=NOW) == []


def test_decision_after_expiry_is_refused(db, approvers):
    a, _ = approvers
    item = _submit(db, "too late", NOW - timedelta(minutes=1))
    overdue.expire_overdue(db, now=NOW)

    with pytest.raises(AlreadyFinalizedError):
        decision.decide(db, item.id, a, "approved")


def test_expire_item_skips_item_finalized_in_the_meantime(db, approvers):
    item = _submit(db, "raced", NOW - timedelta(minutes=1))
    approval_store.cancel_item(db, item.id, item.submitted_by)

    assert overdue.expire_item(db, item.id, now=NOW) is None
    assert approval_store.get_item(db, item.id).status == "cancelled"


def test_sweep_leaves_contended_item_for_next_run(db, approvers):
    stuck = _submit(db, "stuck", NOW - timedelta(hours=2))
    fine = _submit(db, "fine", NOW - timedelta(hours=1))
    real_expire = overdue.expire_item

    def flaky_expire(session, item_id, now=None):
        if item_id == stuck.id:
            raise ConcurrentModificationError(item_id, 3)
        return real_expire(session, item_id, now)

    with patch.object(overdue, "expire_item", side_effect=flaky_expire):
        expired = overdue.expire_overdue(db, now=NOW)

    assert expired == [fine.id]
    assert approval_store.get_item(db, stuck.id).status == "pending"


def test_events_emitted_on_expiry(db, approvers):
    item = _submit(db, "notify", NOW - timedelta(minutes=1))

    with patch("approval_engine.services.overdue.events") as mock_events:
        overdue.expire_item(db, item.id, now=NOW)

    mock_events.item_status_changed.assert_called_once()
    args = mock_events.item_status_changed.call_args.args
    assert args[1:] == ("pending", "expired")
    mock_events.item_expired.assert_called_once()


def test_scheduled_task_runs_sweep(db, session_factory, approvers):
    from approval_engine.workers.overdue_tasks import expire_overdue_items

    item = _submit(db, "yesterday", datetime.now(timezone.utc) - timedelta(days=1))
    _submit(db, "tomorrow", datetime.now(timezone.utc) + timedelta(days=1))

    with patch("approval_engine.db.session.SessionLocal", session_factory):
        result = expire_overdue_items()

    assert result == {"expired": 1, "item_ids": [str(item.id)]}


def test_sweep_losing_to_concurrent_decision_leaves_item_alone(file_engine, monkeypatch):
    approver = uuid.uuid4()
    db = Session(file_engine, expire_on_commit=False, autoflush=False)
    try:
        workflow_registry.create_workflow(db, name="Solo", steps=[{"step_number": 1, "approvers": [approver]}])
        item = _submit(db, "decided at the wire", NOW - timedelta(minutes=10))

        real_load = concurrency.load_item
        calls = {"n": 0}

        def load_then_reject_elsewhere(session, item_id):
            loaded = real_load(session, item_id)
            calls["n"] += 1
            if calls["n"] == 1:
                with Session(file_engine, expire_on_commit=False, autoflush=False) as other:
                    decision.decide(other, item_id, approver, "rejected")
            return loaded

        monkeypatch.setattr(overdue, "load_item", load_then_reject_elsewhere)

        assert overdue.expire_overdue(db, now=NOW) == []
        assert calls["n"] == 2

        final = concurrency.load_item(db, item.id)
        assert final.status == "rejected"
        assert final.decision_version == 1
        actions = [e.action for e in db.query(AuditLog).filter_by(entity_id=item.id)]
        assert "approval_item.expired" not in actions
    finally:
        db.close()
