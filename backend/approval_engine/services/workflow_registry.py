"""Workflow registry: create, edit and resolve approval workflow definitions.

All functions accept a sync SQLAlchemy Session — safe to call from
Celery tasks as well as API handlers.
"""
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from sqlalchemy import case, or_, select
from sqlalchemy.orm import Session

from approval_engine.core.config import settings
from approval_engine.core.exceptions import InvalidWorkflowError, NotFoundError
from approval_engine.models.workflow import ApprovalWorkflow
from approval_engine.services import audit as audit_svc

logger = logging.getLogger(__name__)

ALL_APPROVERS = "all"
DIRECT_APPROVAL_NAME = "Direct approval"

# Fields update_workflow() accepts; anything else is ignored.
EDITABLE_FIELDS = (
    "name",
    "description",
    "workflow_type",
    "steps",
    "auto_approve_threshold",
    "require_all_approvers",
    "is_active",
)
NULLABLE_FIELDS = ("description", "auto_approve_threshold")


# ─── Step value object ───

@dataclass(frozen=True)
class ApprovalStep:
    step_number: int
    name: str
    approvers: tuple[uuid.UUID, ...] = field(default_factory=tuple)
    required_approvals: int | str = 1

    @property
    def is_ad_hoc(self) -> bool:
        """An ad-hoc step has no listed approvers: any eligible reviewer may decide."""
        return not self.approvers

    def quorum(self, require_all: bool) -> int:
        """Number of distinct approvals that satisfy this step."""
        if self.is_ad_hoc:
            return 1
        if require_all or self.required_approvals == ALL_APPROVERS:
            return len(self.approvers)
        return int(self.required_approvals)

    def is_approver(self, approver_id: uuid.UUID | str) -> bool:
        return str(approver_id) in {str(a) for a in self.approvers}

    def to_dict(self) -> dict:
        return {
            "step_number": self.step_number,
            "name": self.name,
            "approvers": [str(a) for a in self.approvers],
            "required_approvals": self.required_approvals,
        }

    def snapshot(self, require_all: bool) -> dict:
        """Serialised form frozen onto an ApprovalItem, with the effective quorum."""
        return {**self.to_dict(), "quorum": self.quorum(require_all)}

    @classmethod
    def from_snapshot(cls, raw: dict) -> "ApprovalStep":
        return cls(
            step_number=int(raw["step_number"]),
            name=raw.get("name") or f"Step {raw['step_number']}",
            approvers=tuple(uuid.UUID(str(a)) for a in raw.get("approvers") or ()),
            required_approvals=raw.get("required_approvals", 1),
        )


def direct_approval_step() -> ApprovalStep:
    return ApprovalStep(step_number=1, name=DIRECT_APPROVAL_NAME)


# ─── Validation ───

def parse_steps(raw_steps, require_all_approvers: bool = False) -> list[ApprovalStep]:
    """Validate raw step dicts and return ApprovalStep objects.

    Raises:
        InvalidWorkflowError: empty list, step numbers other than 1..n in
            order, empty or duplicated approver sets, or a required approval
            count outside 1..len(approvers).
    """
    if not isinstance(raw_steps, (list, tuple)) or not raw_steps:
        raise InvalidWorkflowError("A workflow needs at least one step.")

    steps: list[ApprovalStep] = []
    for index, raw in enumerate(raw_steps, start=1):
        if hasattr(raw, "model_dump"):
            raw = raw.model_dump()
        if not isinstance(raw, dict):
            raise InvalidWorkflowError(f"Step {index} must be an object.")

        step_number = raw.get("step_number", index)
        if isinstance(step_number, bool) or not isinstance(step_number, int) or step_number != index:
            raise InvalidWorkflowError(
                f"Step numbers must run 1..{len(raw_steps)} without gaps; "
                f"position {index} has step_number={step_number!r}."
            )

        name = (raw.get("name") or "").strip() or f"Step {index}"

        raw_approvers = raw.get("approvers") or []
        if not raw_approvers:
            raise InvalidWorkflowError(f"Step {index} must list at least one approver.")
        try:
            approvers = tuple(uuid.UUID(str(a)) for a in raw_approvers)
        except ValueError:
            raise InvalidWorkflowError(f"Step {index} has an approver that is not a valid identity id.")
        if len(set(approvers)) != len(approvers):
            raise InvalidWorkflowError(f"Step {index} lists the same approver more than once.")

        required = raw.get("required_approvals")
        if required is None:
            required = ALL_APPROVERS if require_all_approvers else 1
        if required != ALL_APPROVERS:
            if isinstance(required, bool) or not isinstance(required, int):
                raise InvalidWorkflowError(
                    f"Step {index}: required_approvals must be an integer or '{ALL_APPROVERS}'."
                )
            if not 1 <= required <= len(approvers):
                raise InvalidWorkflowError(
                    f"Step {index}: required_approvals={required} must be between 1 and "
                    f"{len(approvers)} (the number of approvers)."
                )

        steps.append(ApprovalStep(
            step_number=index,
            name=name,
            approvers=approvers,
            required_approvals=required,
        ))

    return steps


def _validate_threshold(threshold) -> Decimal | None:
    if threshold is None:
        return None
    try:
        value = Decimal(str(threshold))
    except InvalidOperation:
        raise InvalidWorkflowError(f"auto_approve_threshold {threshold!r} is not a number.")
    if not value.is_finite() or value < 0:
        raise InvalidWorkflowError("auto_approve_threshold must be a non-negative number.")
    return value


def steps_of(workflow: ApprovalWorkflow) -> list[ApprovalStep]:
    """Steps of a stored (already validated) or synthetic workflow."""
    if workflow.is_synthetic:
        return [ApprovalStep.from_snapshot(s) for s in workflow.steps]
    return parse_steps(workflow.steps, workflow.require_all_approvers)


# ─── CRUD ───

def create_workflow(
    db: Session,
    *,
    name: str,
    steps: list,
    client_id: uuid.UUID | None = None,
    workflow_type: str = "general",
    description: str | None = None,
    auto_approve_threshold=None,
    require_all_approvers: bool = False,
    is_active: bool = True,
    created_by: uuid.UUID | None = None,
) -> ApprovalWorkflow:
    """Validate and persist a new workflow definition.

    Raises:
        InvalidWorkflowError: if the definition is malformed. Nothing is written.
    """
    if not name or not name.strip():
        raise InvalidWorkflowError("A workflow needs a name.")
    parsed = parse_steps(steps, require_all_approvers)
    threshold = _validate_threshold(auto_approve_threshold)

    workflow = ApprovalWorkflow(
        client_id=client_id,
        name=name.strip(),
        description=description,
        workflow_type=workflow_type or "general",
        steps=[s.to_dict() for s in parsed],
        auto_approve_threshold=threshold,
        require_all_approvers=require_all_approvers,
        is_active=is_active,
        version=1,
        created_by=created_by,
    )
    db.add(workflow)
    db.flush()

    audit_svc.log(
        db=db,
        action="approval_workflow.created",
        entity_type="approval_workflow",
        entity_id=workflow.id,
        actor_id=created_by,
        client_id=client_id,
        after=_workflow_snapshot(workflow),
    )
    db.commit()

    logger.info(
        "Workflow created: id=%s name=%r client=%s type=%s steps=%d",
        workflow.id, workflow.name, client_id, workflow.workflow_type, len(parsed),
    )
    return workflow


def get_workflow(db: Session, workflow_id: uuid.UUID) -> ApprovalWorkflow:
    workflow = db.execute(
        select(ApprovalWorkflow).where(ApprovalWorkflow.id == workflow_id)
    ).scalars().first()
    if workflow is None:
        raise NotFoundError("Workflow", workflow_id)
    return workflow


def list_workflows(
    db: Session,
    client_id: uuid.UUID | None = None,
    include_inactive: bool = False,
) -> list[ApprovalWorkflow]:
    """Workflows visible to a client: global ones plus the client's own."""
    stmt = select(ApprovalWorkflow)
    if not include_inactive:
        stmt = stmt.where(ApprovalWorkflow.is_active.is_(True))
    if client_id is not None:
        stmt = stmt.where(
            or_(ApprovalWorkflow.client_id.is_(None), ApprovalWorkflow.client_id == client_id)
        )
    stmt = stmt.order_by(ApprovalWorkflow.workflow_type, ApprovalWorkflow.name)
    return list(db.execute(stmt).scalars().all())


def update_workflow(
    db: Session,
    workflow_id: uuid.UUID,
    changes: dict,
    actor_id: uuid.UUID | None = None,
) -> ApprovalWorkflow:
    """Apply edits and bump the version.

    Items already submitted keep the steps they snapshotted; only new
    submissions see the edited definition.
    """
    workflow = get_workflow(db, workflow_id)
    before = _workflow_snapshot(workflow)

    changes = {
        k: v for k, v in changes.items()
        if k in EDITABLE_FIELDS and (v is not None or k in NULLABLE_FIELDS)
    }
    if not changes:
        return workflow

    require_all = changes.get("require_all_approvers", workflow.require_all_approvers)
    raw_steps = changes.get("steps", workflow.steps)
    parsed = parse_steps(raw_steps, require_all)

    if "name" in changes:
        if not changes["name"] or not changes["name"].strip():
            raise InvalidWorkflowError("A workflow needs a name.")
        workflow.name = changes["name"].strip()
    if "description" in changes:
        workflow.description = changes["description"]
    if "workflow_type" in changes:
        workflow.workflow_type = changes["workflow_type"] or "general"
    if "auto_approve_threshold" in changes:
        workflow.auto_approve_threshold = _validate_threshold(changes["auto_approve_threshold"])
    if "is_active" in changes:
        workflow.is_active = bool(changes["is_active"])
    workflow.require_all_approvers = require_all
    workflow.steps = [s.to_dict() for s in parsed]
    workflow.version = workflow.version + 1
    db.flush()

    audit_svc.log(
        db=db,
        action="approval_workflow.updated",
        entity_type="approval_workflow",
        entity_id=workflow.id,
        actor_id=actor_id,
        client_id=workflow.client_id,
        before=before,
        after=_workflow_snapshot(workflow),
    )
    db.commit()

    logger.info("Workflow updated: id=%s version=%d", workflow.id, workflow.version)
    return workflow


def deactivate_workflow(
    db: Session,
    workflow_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
) -> ApprovalWorkflow:
    """Stop a workflow from accepting new submissions. In-flight items are untouched."""
    workflow = get_workflow(db, workflow_id)
    if not workflow.is_active:
        return workflow

    workflow.is_active = False
    db.flush()
    audit_svc.log(
        db=db,
        action="approval_workflow.deactivated",
        entity_type="approval_workflow",
        entity_id=workflow.id,
        actor_id=actor_id,
        client_id=workflow.client_id,
        before={"is_active": True},
        after={"is_active": False},
    )
    db.commit()

    logger.info("Workflow deactivated: id=%s", workflow.id)
    return workflow


# ─── Resolution ───

def resolve(
    db: Session,
    client_id: uuid.UUID | None,
    workflow_type: str = "general",
) -> ApprovalWorkflow:
    """Return the most specific active workflow for (client, type).

    A client-scoped workflow beats a global one; among equals the most
    recently updated wins. With nothing configured, returns an unsaved
    single-step direct-approval workflow so submission never fails for lack
    of configuration.
    """
    scope = ApprovalWorkflow.client_id.is_(None)
    if client_id is not None:
        scope = or_(scope, ApprovalWorkflow.client_id == client_id)

    stmt = (
        select(ApprovalWorkflow)
        .where(
            ApprovalWorkflow.is_active.is_(True),
            ApprovalWorkflow.workflow_type == (workflow_type or "general"),
            scope,
        )
        .order_by(
            case((ApprovalWorkflow.client_id.is_(None), 1), else_=0),
            ApprovalWorkflow.updated_at.desc(),
        )
        .limit(1)
    )
    workflow = db.execute(stmt).scalars().first()
    if workflow is not None:
        return workflow

    logger.debug(
        "resolve: no workflow for client=%s type=%s — using direct approval",
        client_id, workflow_type,
    )
    return ApprovalWorkflow(
        id=None,
        client_id=client_id,
        name=DIRECT_APPROVAL_NAME,
        workflow_type=workflow_type or "general",
        steps=[direct_approval_step().to_dict()],
        auto_approve_threshold=settings.DEFAULT_AUTO_APPROVE_THRESHOLD,
        require_all_approvers=False,
        is_active=True,
        version=1,
    )


# ─── Internal helper ───

def _workflow_snapshot(workflow: ApprovalWorkflow) -> dict:
    return {
        "name": workflow.name,
        "client_id": workflow.client_id,
        "workflow_type": workflow.workflow_type,
        "steps": workflow.steps,
        "auto_approve_threshold": workflow.auto_approve_threshold,
        "require_all_approvers": workflow.require_all_approvers,
        "is_active": workflow.is_active,
        "version": workflow.version,
    }
