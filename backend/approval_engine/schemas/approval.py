"""Pydantic schemas for approval item API endpoints."""
import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from approval_engine.models.approval import DecisionType, Priority


# ─── Submit ───

class ApprovalSubmitRequest(BaseModel):
    client_id: uuid.UUID | None = None
    item_type: str = Field("general", min_length=1, max_length=100)
    item_id: str | None = Field(None, max_length=255)
    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    priority: Priority = Priority.medium
    due_date: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    workflow_id: uuid.UUID | None = None


# ─── Decide / cancel ───

class ApprovalDecisionRequest(BaseModel):
    item_id: uuid.UUID
    decision: DecisionType
    comments: str | None = None
    expected_step: int | None = Field(None, ge=1)


class ApprovalCancelRequest(BaseModel):
    item_id: uuid.UUID


# ─── Outputs ───

class ApprovalItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    workflow_id: uuid.UUID | None
    workflow_version: int | None
    client_id: uuid.UUID | None
    item_type: str
    item_id: str | None
    title: str
    description: str | None
    status: str
    priority: str
    current_step: int
    total_steps: int
    steps: list[dict[str, Any]] = Field(validation_alias=AliasChoices("steps_snapshot", "steps"))
    due_date: datetime | None
    submitted_by: uuid.UUID | None
    submitted_at: datetime
    decided_at: datetime | None
    decision_version: int
    data: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class ApprovalDecisionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    approval_item_id: uuid.UUID
    step_number: int
    approver_id: uuid.UUID
    decision: str
    comments: str | None
    decided_at: datetime


class ApprovalListResponse(BaseModel):
    items: list[ApprovalItemOut]
    total: int


class ApprovalStatsOut(BaseModel):
    pending: int
    in_review: int
    approved: int
    rejected: int
    cancelled: int
    expired: int
    urgent: int
    overdue: int


ListStatus = Literal["pending", "all"]
