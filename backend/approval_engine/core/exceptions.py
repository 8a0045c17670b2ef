"""Typed, user-presentable errors raised by the approval services.

Each error carries a stable ``code`` and the HTTP status the API layer maps it
to (see ``approval_engine.main``).
"""
import uuid


class ApprovalError(Exception):
    code = "approval_error"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidWorkflowError(ApprovalError):
    """Malformed workflow configuration, or a workflow that cannot take submissions."""

    code = "invalid_workflow"
    http_status = 422


class NotFoundError(ApprovalError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id: uuid.UUID | str):
        super().__init__(f"{entity} {entity_id} not found.")
        self.entity = entity
        self.entity_id = entity_id


class NotAuthorizedError(ApprovalError):
    code = "not_authorized"
    http_status = 403


class DuplicateDecisionError(ApprovalError):
    code = "duplicate_decision"
    http_status = 409

    def __init__(self, item_id: uuid.UUID, step_number: int, approver_id: uuid.UUID):
        super().__init__(
            f"Approver {approver_id} already decided step {step_number} of item {item_id}."
        )
        self.item_id = item_id
        self.step_number = step_number
        self.approver_id = approver_id


class InvalidTransitionError(ApprovalError):
    code = "invalid_transition"
    http_status = 409

    def __init__(self, message: str, from_status: str | None = None, to_status: str | None = None):
        super().__init__(message)
        self.from_status = from_status
        self.to_status = to_status


class AlreadyFinalizedError(InvalidTransitionError):
    """The item reached a terminal status; no further action is accepted."""

    code = "already_finalized"

    def __init__(self, item_id: uuid.UUID, status: str):
        super().__init__(f"Approval item {item_id} is already {status}.", from_status=status)
        self.item_id = item_id
        self.status = status


class ConcurrentModificationError(ApprovalError):
    code = "concurrent_modification"
    http_status = 409

    def __init__(self, item_id: uuid.UUID, attempts: int):
        super().__init__(
            f"Approval item {item_id} kept changing underneath this request "
            f"({attempts} attempts). Please retry."
        )
        self.item_id = item_id
        self.attempts = attempts
