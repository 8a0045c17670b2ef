"""Approval workflow definitions."""
import uuid
from decimal import Decimal

from sqlalchemy import Boolean, Integer, JSON, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from approval_engine.db.base import Base, TimestampMixin, UUIDMixin


class ApprovalWorkflow(Base, UUIDMixin, TimestampMixin):
    """Linear sequence of approval steps, global (client_id NULL) or per client."""

    __tablename__ = "approval_workflows"

    client_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    workflow_type: Mapped[str] = mapped_column(String(100), nullable=False, default="general", index=True)
    # [{"step_number": 1, "name": ..., "approvers": [uuid-str, ...], "required_approvals": 1 | "all"}]
    steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    auto_approve_threshold: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    require_all_approvers: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    @property
    def is_synthetic(self) -> bool:
        """True for the unsaved direct-approval fallback returned by resolve()."""
        return self.id is None
