from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from punch_audit.models import AuditActorType, AuditLog, Discrepancy, SyncBatch

logger = logging.getLogger("punch_audit.audit")

SYSTEM_ACTOR_ID = "system"

_ENTITY_TYPES: dict[type, str] = {
    Discrepancy: "discrepancy",
    SyncBatch: "sync_batch",
}


def actor_type_for(actor_id: str) -> AuditActorType:
    return AuditActorType.SYSTEM if actor_id == SYSTEM_ACTOR_ID else AuditActorType.MANAGER


def _entity_ref(entity: Any) -> tuple[str | None, str | None]:
    if entity is None:
        return None, None
    entity_type = _ENTITY_TYPES.get(type(entity), type(entity).__name__.lower())
    entity_id = getattr(entity, "id", None)
    return entity_type, str(entity_id) if entity_id is not None else None


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    entity: Discrepancy | SyncBatch | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
    request_id: str | None = None,
) -> AuditLog | None:
    """Persist one audit row for a manager, employee or system action.

    The domain change has already been committed when this runs, so a failed
    audit write is logged and rolled back without failing the request.
    """
    entity_type, entity_id = _entity_ref(entity)
    row = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        success=success,
        details=details or {},
    )
    db.add(row)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={"request_id": request_id, "action": action, "actor_id": actor_id},
        )
        return None

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
        },
    )
    return row
