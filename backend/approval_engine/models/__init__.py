from approval_engine.models.workflow import ApprovalWorkflow
from approval_engine.models.approval import (
    ApprovalItem,
    ApprovalDecision,
    ItemStatus,
    Priority,
    DecisionType,
)
from approval_engine.models.audit import AuditLog

__all__ = [
    "ApprovalWorkflow",
    "ApprovalItem", "ApprovalDecision", "ItemStatus", "Priority", "DecisionType",
    "AuditLog",
]
