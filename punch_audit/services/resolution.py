from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from punch_audit.errors import ApiError
from punch_audit.models import Discrepancy, DiscrepancyStatus

logger = logging.getLogger("punch_audit.resolution")

# Only open -> resolved exists; resolved is terminal.
ALLOWED_TRANSITIONS: dict[DiscrepancyStatus, set[DiscrepancyStatus]] = {
    DiscrepancyStatus.OPEN: {DiscrepancyStatus.RESOLVED},
    DiscrepancyStatus.RESOLVED: set(),
}


def can_transition(from_status: DiscrepancyStatus, to_status: DiscrepancyStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def resolve_discrepancy(
    db: Session,
    *,
    discrepancy_id: int,
    reason: str,
    resolved_by: str,
    note: str | None = None,
    owner_employee_id: int | None = None,
) -> Discrepancy:
    """Close one open discrepancy with a reason.

    ``owner_employee_id`` is set for self-service resolution; the discrepancy
    must then belong to that employee.
    """
    normalized_reason = (reason or "").strip()
    if not normalized_reason:
        raise ApiError(
            status_code=422,
            code="RESOLUTION_REASON_REQUIRED",
            message="A resolution reason is required.",
        )

    discrepancy = db.get(Discrepancy, discrepancy_id)
    if discrepancy is None:
        raise ApiError(
            status_code=404,
            code="DISCREPANCY_NOT_FOUND",
            message="Discrepancy not found.",
        )
    if owner_employee_id is not None and discrepancy.employee_id != owner_employee_id:
        raise ApiError(
            status_code=403,
            code="DISCREPANCY_FORBIDDEN",
            message="Discrepancy belongs to another employee.",
        )
    if not can_transition(discrepancy.status, DiscrepancyStatus.RESOLVED):
        raise ApiError(
            status_code=409,
            code="DISCREPANCY_ALREADY_RESOLVED",
            message="Discrepancy is already resolved.",
        )

    normalized_note = (note or "").strip() or None
    discrepancy.status = DiscrepancyStatus.RESOLVED
    discrepancy.resolved_reason = normalized_reason
    discrepancy.resolved_note = normalized_note
    discrepancy.resolved_by = resolved_by
    discrepancy.resolved_at = datetime.now(timezone.utc)

    db.commit()
    db.refresh(discrepancy)
    logger.info(
        "discrepancy_resolved",
        extra={
            "discrepancy_id": discrepancy.id,
            "employee_id": discrepancy.employee_id,
            "rule": discrepancy.rule.value,
            "resolved_by": resolved_by,
            "self_service": owner_employee_id is not None,
        },
    )
    return discrepancy
