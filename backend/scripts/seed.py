"""Seed script — creates sample approval workflows for local development.

Run from backend/ after ``alembic upgrade head``:

    python -m scripts.seed
"""
import uuid

from approval_engine.db.session import SessionLocal
from approval_engine.services import workflow_registry

# Fixed ids so tokens minted for local testing stay valid across reseeds.
MANAGER_ID = uuid.UUID("6f1c2a4e-0d5b-4c8e-9a51-3b7f2e1d0c01")
FINANCE_IDS = [
    uuid.UUID("6f1c2a4e-0d5b-4c8e-9a51-3b7f2e1d0c02"),
    uuid.UUID("6f1c2a4e-0d5b-4c8e-9a51-3b7f2e1d0c03"),
    uuid.UUID("6f1c2a4e-0d5b-4c8e-9a51-3b7f2e1d0c04"),
]
DEMO_CLIENT_ID = uuid.UUID("a1b2c3d4-0000-4000-8000-000000000001")


def seed() -> None:
    with SessionLocal() as db:
        if workflow_registry.list_workflows(db, include_inactive=True):
            print("Workflows already present, nothing to do.")
            return

        global_wf = workflow_registry.create_workflow(
            db,
            name="Expense approval",
            workflow_type="expense",
            description="Manager sign-off, then two of three finance approvers.",
            steps=[
                {"step_number": 1, "name": "Manager", "approvers": [MANAGER_ID]},
                {"step_number": 2, "name": "Finance", "approvers": FINANCE_IDS, "required_approvals": 2},
            ],
            auto_approve_threshold=1000,
        )
        client_wf = workflow_registry.create_workflow(
            db,
            name="Demo client invoices",
            client_id=DEMO_CLIENT_ID,
            workflow_type="invoice",
            steps=[{"step_number": 1, "name": "Finance", "approvers": FINANCE_IDS}],
            require_all_approvers=True,
        )

        print("Seed complete.")
        print(f"  {global_wf.name}: {global_wf.id}")
        print(f"  {client_wf.name}: {client_wf.id} (client {DEMO_CLIENT_ID})")


if __name__ == "__main__":
    seed()
