"""Audit log helper — append-only writes to audit_logs table."""
import json
import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from approval_engine.middleware.request_id import get_request_id
from approval_engine.models.audit import AuditLog

logger = logging.getLogger(__name__)


def log(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID | str | None = None,
    actor_id: uuid.UUID | str | None = None,
    client_id: uuid.UUID | str | None = None,
    before: Any | None = None,
    after: Any | None = None,
    notes: str | None = None,
) -> AuditLog:
    """Write a single audit log entry inside the caller's transaction.

    Args:
        db: Sync SQLAlchemy session. The caller commits or rolls back, so an
            entry never outlives the transition it describes.
        action: Dotted verb, e.g. 'approval_item.submitted', 'workflow.updated'.
        entity_type: Table/domain name, e.g. 'approval_item', 'approval_workflow'.
        entity_id: PK of the affected record.
        actor_id: Identity that performed the action (None for system actions).
        client_id: Tenant the entity belongs to, for per-client audit views.
        before: Dict snapshot of state before the action (JSON-serialisable).
        after: Dict snapshot of state after the action.
        notes: Free-text annotation.
    """
    entry = AuditLog(
        actor_id=uuid.UUID(str(actor_id)) if actor_id else None,
        action=action,
        entity_type=entity_type,
        entity_id=uuid.UUID(str(entity_id)) if entity_id else None,
        client_id=uuid.UUID(str(client_id)) if client_id else None,
        before_state=json.dumps(before, default=str) if before is not None else None,
        after_state=json.dumps(after, default=str) if after is not None else None,
        request_id=get_request_id(),
        notes=notes,
    )
    db.add(entry)
    db.flush()
    logger.debug("Audit: %s %s/%s", action, entity_type, entity_id)
    return entry
