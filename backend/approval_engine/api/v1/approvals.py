"""Approval item API endpoints (JWT required).

  POST /approvals/submit               — submit an item for approval
  POST /approvals/decide               — approve / reject / request changes
  POST /approvals/cancel               — withdraw an open item
  GET  /approvals/list                 — ordered items (pending or all)
  GET  /approvals/stats                — dashboard counts
  GET  /approvals/inbox                — items waiting on the caller
  GET  /approvals/{item_id}            — item detail
  GET  /approvals/{item_id}/decisions  — decision trail

Business errors raised by the services are typed (ApprovalError) and
rendered by the handler registered in main.py.
"""
import logging
import uuid
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from approval_engine.core.config import settings
from approval_engine.core.deps import Identity, ensure_client_access, get_current_identity
from approval_engine.core.limiter import limiter
from approval_engine.db.session import get_db
from approval_engine.schemas.approval import (
    ApprovalCancelRequest,
    ApprovalDecisionOut,
    ApprovalDecisionRequest,
    ApprovalItemOut,
    ApprovalListResponse,
    ApprovalStatsOut,
    ApprovalSubmitRequest,
    ListStatus,
)
from approval_engine.services import approval_store, decision, stats

logger = logging.getLogger(__name__)

router = APIRouter()

DbSession = Annotated[Session, Depends(get_db)]
CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]


def _visible_item(db: Session, identity: Identity, item_id: uuid.UUID):
    item = approval_store.get_item(db, item_id)
    ensure_client_access(identity, item.client_id)
    return item


# ─── Submit ───

@router.post(
    "/submit",
    response_model=ApprovalItemOut,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an item for approval",
)
def submit(body: ApprovalSubmitRequest, db: DbSession, identity: CurrentIdentity):
    ensure_client_access(identity, body.client_id)
    item = approval_store.submit_item(
        db,
        title=body.title,
        submitted_by=identity.id,
        item_type=body.item_type,
        client_id=body.client_id,
        item_id=body.item_id,
        description=body.description,
        priority=body.priority,
        due_date=body.due_date,
        data=body.data,
        workflow_id=body.workflow_id,
    )
    return ApprovalItemOut.model_validate(item)


# ─── Decide ───

@router.post(
    "/decide",
    response_model=ApprovalItemOut,
    summary="Record the caller's decision on an item's current step",
)
@limiter.limit(settings.DECIDE_RATE_LIMIT)
def decide(request: Request, body: ApprovalDecisionRequest, db: DbSession, identity: CurrentIdentity):
    _visible_item(db, identity, body.item_id)
    item = decision.decide(
        db,
        item_id=body.item_id,
        approver_id=identity.id,
        decision=body.decision,
        comments=body.comments,
        ad_hoc_reviewer=identity.is_ad_hoc_reviewer,
        expected_step=body.expected_step,
    )
    return ApprovalItemOut.model_validate(item)


# ─── Cancel ───

@router.post(
    "/cancel",
    response_model=ApprovalItemOut,
    summary="Cancel an open item (submitter or ADMIN)",
)
def cancel(body: ApprovalCancelRequest, db: DbSession, identity: CurrentIdentity):
    _visible_item(db, identity, body.item_id)
    item = approval_store.cancel_item(
        db,
        item_id=body.item_id,
        actor_id=identity.id,
        is_admin=identity.is_admin,
    )
    return ApprovalItemOut.model_validate(item)


# ─── Lists ───

@router.get(
    "/list",
    response_model=ApprovalListResponse,
    summary="List items, urgent and oldest first",
)
def list_items(
    db: DbSession,
    identity: CurrentIdentity,
    status_filter: ListStatus = Query("pending", alias="status"),
    client_id: uuid.UUID | None = Query(None),
    limit: int | None = Query(None, ge=1, le=settings.LIST_MAX_LIMIT),
):
    ensure_client_access(identity, client_id)
    if status_filter == "pending":
        items = approval_store.list_pending(
            db, client_id, identity.visible_client_ids, limit=limit
        )
    else:
        items = approval_store.list_all(
            db, client_id, limit=limit, visible_client_ids=identity.visible_client_ids
        )
    out = [ApprovalItemOut.model_validate(i) for i in items]
    return ApprovalListResponse(items=out, total=len(out))


@router.get(
    "/inbox",
    response_model=ApprovalListResponse,
    summary="Open items whose current step is waiting on the caller",
)
def inbox(
    db: DbSession,
    identity: CurrentIdentity,
    client_id: uuid.UUID | None = Query(None),
):
    ensure_client_access(identity, client_id)
    items = approval_store.list_awaiting(
        db,
        approver_id=identity.id,
        client_id=client_id,
        visible_client_ids=identity.visible_client_ids,
        ad_hoc_reviewer=identity.is_ad_hoc_reviewer,
    )
    out = [ApprovalItemOut.model_validate(i) for i in items]
    return ApprovalListResponse(items=out, total=len(out))


@router.get(
    "/stats",
    response_model=ApprovalStatsOut,
    summary="Dashboard counts",
)
def get_stats(
    db: DbSession,
    identity: CurrentIdentity,
    client_id: uuid.UUID | None = Query(None),
    since: datetime | None = Query(None, description="Window approved/rejected counts from this time"),
):
    ensure_client_access(identity, client_id)
    counts = stats.get_stats(
        db,
        client_id=client_id,
        since=since,
        visible_client_ids=identity.visible_client_ids,
    )
    return ApprovalStatsOut(**counts)


# ─── Detail ───

@router.get(
    "/{item_id}",
    response_model=ApprovalItemOut,
    summary="Get an approval item",
)
def get_item(item_id: uuid.UUID, db: DbSession, identity: CurrentIdentity):
    return ApprovalItemOut.model_validate(_visible_item(db, identity, item_id))


@router.get(
    "/{item_id}/decisions",
    response_model=list[ApprovalDecisionOut],
    summary="Decision trail of an item, oldest first",
)
def list_decisions(item_id: uuid.UUID, db: DbSession, identity: CurrentIdentity):
    _visible_item(db, identity, item_id)
    return [
        ApprovalDecisionOut.model_validate(d)
        for d in approval_store.list_decisions(db, item_id)
    ]
