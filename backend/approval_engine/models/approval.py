import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_engine.db.base import Base, TimestampMixin, UUIDMixin, utcnow


class ItemStatus(str, enum.Enum):
    pending = "pending"
    in_review = "in_review"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"
    expired = "expired"


class Priority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class DecisionType(str, enum.Enum):
    approved = "approved"
    rejected = "rejected"
    request_changes = "request_changes"


OPEN_STATUSES = frozenset({ItemStatus.pending.value, ItemStatus.in_review.value})
TERMINAL_STATUSES = frozenset({
    ItemStatus.approved.value,
    ItemStatus.rejected.value,
    ItemStatus.cancelled.value,
    ItemStatus.expired.value,
})

# Higher rank sorts first in every list read path.
PRIORITY_RANK = {
    Priority.urgent.value: 4,
    Priority.high.value: 3,
    Priority.medium.value: 2,
    Priority.low.value: 1,
}

# Actor recorded on decisions the engine makes itself (auto-approve).
SYSTEM_ACTOR_ID = uuid.UUID(int=0)


class ApprovalItem(Base, UUIDMixin, TimestampMixin):
    """One thing awaiting sign-off. Never deleted; terminal rows stay for audit."""

    __tablename__ = "approval_items"

    workflow_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_workflows.id"), nullable=True, index=True
    )
    workflow_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    client_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    item_type: Mapped[str] = mapped_column(String(100), nullable=False, default="general")
    item_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ItemStatus.pending.value, index=True
    )  # pending, in_review, approved, rejected, cancelled, expired
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default=Priority.medium.value)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_steps: Mapped[int] = mapped_column(Integer, nullable=False)
    # Step definitions frozen at submission; workflow edits never reach in-flight items.
    steps_snapshot: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    submitted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    decisions: Mapped[list["ApprovalDecision"]] = relationship(
        "ApprovalDecision",
        order_by="ApprovalDecision.decided_at",
        viewonly=True,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ApprovalDecision(Base, UUIDMixin):
    """Append-only audit row: one vote by one approver on one step."""

    __tablename__ = "approval_decisions"
    __table_args__ = (
        UniqueConstraint(
            "approval_item_id", "step_number", "approver_id",
            name="uq_approval_decisions_item_step_approver",
        ),
    )

    approval_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("approval_items.id"), nullable=False, index=True
    )
    step_number: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)  # approved, rejected, request_changes
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
