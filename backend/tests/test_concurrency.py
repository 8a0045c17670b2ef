"""Concurrent approvers racing on the same quorum step.

Each thread uses its own session against a file-backed SQLite database, so
the conditional version write is exercised across real connections.
"""
import threading
import uuid

from sqlalchemy.orm import sessionmaker

from approval_engine.core.exceptions import ApprovalError, InvalidTransitionError
from approval_engine.models.approval import ApprovalDecision
from approval_engine.services import approval_store, decision, workflow_registry


def test_quorum_step_advances_exactly_once_under_concurrency(serialized_engine):
    make_session = sessionmaker(serialized_engine, expire_on_commit=False, autoflush=False)
    step_one = [uuid.uuid4() for _ in range(5)]
    step_two = [uuid.uuid4()]

    with make_session() as db:
        workflow_registry.create_workflow(
            db,
            name="Board sign-off",
            steps=[
                {"step_number": 1, "approvers": step_one, "required_approvals": 2},
                {"step_number": 2, "approvers": step_two},
            ],
        )
        item = approval_store.submit_item(db, title="Acquisition", submitted_by=uuid.uuid4())
        decision.decide(db, item.id, step_one[0], "approved")
        item_id = item.id

    racers = step_one[1:]
    barrier = threading.Barrier(len(racers))
    outcomes: dict[uuid.UUID, object] = {}

    def vote(approver_id):
        barrier.wait()
        with make_session() as session:
            try:
                result = decision.decide(session, item_id, approver_id, "approved", expected_step=1)
                outcomes[approver_id] = result.status
            except ApprovalError as exc:
                outcomes[approver_id] = exc

    threads = [threading.Thread(target=vote, args=(a,)) for a in racers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(outcomes) == len(racers)
    winners = [v for v in outcomes.values() if not isinstance(v, Exception)]
    losers = [v for v in outcomes.values() if isinstance(v, Exception)]
    assert winners == ["pending"]
    assert all(isinstance(e, InvalidTransitionError) for e in losers)

    with make_session() as db:
        final = approval_store.get_item(db, item_id)
        assert (final.status, final.current_step) == ("pending", 2)
        assert final.decision_version == 2

        step_one_votes = db.query(ApprovalDecision).filter_by(
            approval_item_id=item_id, step_number=1, decision="approved",
        ).count()
        assert step_one_votes == 2
