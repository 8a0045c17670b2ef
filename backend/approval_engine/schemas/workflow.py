"""Pydantic schemas for approval workflow definitions."""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ApprovalStepIn(BaseModel):
    step_number: int
    name: str = ""
    approvers: list[uuid.UUID]
    required_approvals: int | Literal["all"] | None = None


class WorkflowIn(BaseModel):
    client_id: uuid.UUID | None = None
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    workflow_type: str = Field("general", min_length=1, max_length=100)
    steps: list[ApprovalStepIn]
    auto_approve_threshold: Decimal | None = None
    require_all_approvers: bool = False
    is_active: bool = True


class WorkflowUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    workflow_type: str | None = None
    steps: list[ApprovalStepIn] | None = None
    auto_approve_threshold: Decimal | None = None
    require_all_approvers: bool | None = None
    is_active: bool | None = None


class WorkflowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: uuid.UUID | None
    name: str
    description: str | None
    workflow_type: str
    steps: list[dict]
    auto_approve_threshold: Decimal | None
    require_all_approvers: bool
    is_active: bool
    version: int
    created_by: uuid.UUID | None
    created_at: datetime
    updated_at: datetime
