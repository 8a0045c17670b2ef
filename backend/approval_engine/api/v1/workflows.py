"""Approval workflow definition endpoints."""
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from approval_engine.core.deps import Identity, ensure_client_access, get_current_identity, require_role
from approval_engine.db.session import get_db
from approval_engine.schemas.workflow import WorkflowIn, WorkflowOut, WorkflowUpdate
from approval_engine.services import workflow_registry

router = APIRouter()

DbSession = Annotated[Session, Depends(get_db)]


@router.get(
    "",
    response_model=list[WorkflowOut],
    summary="List workflows visible to a client (global + client-scoped)",
)
def list_workflows(
    db: DbSession,
    identity: Annotated[Identity, Depends(get_current_identity)],
    client_id: uuid.UUID | None = Query(None),
    include_inactive: bool = Query(False),
):
    ensure_client_access(identity, client_id)
    workflows = workflow_registry.list_workflows(
        db, client_id=client_id, include_inactive=include_inactive and identity.is_admin
    )
    return [
        WorkflowOut.model_validate(w) for w in workflows
        if identity.can_access_client(w.client_id)
    ]


@router.post(
    "",
    response_model=WorkflowOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow (ADMIN)",
)
def create_workflow(
    body: WorkflowIn,
    db: DbSession,
    identity: Annotated[Identity, Depends(require_role("ADMIN"))],
):
    workflow = workflow_registry.create_workflow(
        db,
        name=body.name,
        steps=[s.model_dump() for s in body.steps],
        client_id=body.client_id,
        workflow_type=body.workflow_type,
        description=body.description,
        auto_approve_threshold=body.auto_approve_threshold,
        require_all_approvers=body.require_all_approvers,
        is_active=body.is_active,
        created_by=identity.id,
    )
    return WorkflowOut.model_validate(workflow)


@router.get(
    "/{workflow_id}",
    response_model=WorkflowOut,
    summary="Get a workflow",
)
def get_workflow(
    workflow_id: uuid.UUID,
    db: DbSession,
    identity: Annotated[Identity, Depends(get_current_identity)],
):
    workflow = workflow_registry.get_workflow(db, workflow_id)
    ensure_client_access(identity, workflow.client_id)
    return WorkflowOut.model_validate(workflow)


@router.patch(
    "/{workflow_id}",
    response_model=WorkflowOut,
    summary="Edit a workflow (ADMIN); in-flight items keep their snapshot",
)
def update_workflow(
    workflow_id: uuid.UUID,
    body: WorkflowUpdate,
    db: DbSession,
    identity: Annotated[Identity, Depends(require_role("ADMIN"))],
):
    changes = body.model_dump(exclude_unset=True)
    workflow = workflow_registry.update_workflow(db, workflow_id, changes, actor_id=identity.id)
    return WorkflowOut.model_validate(workflow)


@router.post(
    "/{workflow_id}/deactivate",
    response_model=WorkflowOut,
    summary="Deactivate a workflow (ADMIN)",
)
def deactivate_workflow(
    workflow_id: uuid.UUID,
    db: DbSession,
    identity: Annotated[Identity, Depends(require_role("ADMIN"))],
):
    workflow = workflow_registry.deactivate_workflow(db, workflow_id, actor_id=identity.id)
    return WorkflowOut.model_validate(workflow)
