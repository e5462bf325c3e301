from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from punch_audit.audit import actor_type_for, log_audit
from punch_audit.db import get_db
from punch_audit.errors import ApiError, get_request_id
from punch_audit.models import AuditActorType, DiscrepancyStatus
from punch_audit.routers.deps import get_actor_id, get_member_employee_id, get_rules
from punch_audit.schemas import (
    DetectionRunRequest,
    DetectionRunResponse,
    DiscrepancyRead,
    DiscrepancyResolveRequest,
    DiscrepancyStatsRead,
    RuleSummaryRead,
)
from punch_audit.services.discrepancies import (
    compute_stats,
    list_discrepancies,
    run_detection,
    summarize_by_rule,
)
from punch_audit.services.resolution import resolve_discrepancy
from punch_audit.settings import AttendanceRules

router = APIRouter(tags=["discrepancies"])

SELF_SERVICE_RESOLVER_PREFIX = "self:"


def _check_range(start_date: date | None, end_date: date | None) -> None:
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_RANGE", message="end_date must not precede start_date.")


@router.post("/api/discrepancies/detect", response_model=DetectionRunResponse)
def detect_discrepancies(
    payload: DetectionRunRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    rules: AttendanceRules = Depends(get_rules),
) -> DetectionRunResponse:
    run = run_detection(
        db,
        start_date=payload.start_date,
        end_date=payload.end_date,
        employee_id=payload.employee_id,
        clear_open=payload.clear_open,
        rules=rules,
    )
    log_audit(
        db,
        actor_type=actor_type_for(actor_id),
        actor_id=actor_id,
        action="DISCREPANCY_DETECTION_RUN",
        details={
            "start_date": payload.start_date.isoformat(),
            "end_date": payload.end_date.isoformat(),
            "created": len(run.created),
            "cleared_open": run.cleared_open,
        },
        request_id=get_request_id(request),
    )
    return DetectionRunResponse(
        start_date=run.start_date,
        end_date=run.end_date,
        employee_days_evaluated=run.employee_days_evaluated,
        cleared_open=run.cleared_open,
        created=len(run.created),
        created_by_rule=run.created_by_rule,
    )


@router.get("/api/discrepancies", response_model=list[DiscrepancyRead])
def get_discrepancies(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    employee_id: int | None = Query(default=None, ge=1),
    status: DiscrepancyStatus | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[DiscrepancyRead]:
    _check_range(start_date, end_date)
    rows = list_discrepancies(
        db,
        start_date=start_date,
        end_date=end_date,
        employee_id=employee_id,
        status=status,
    )
    return [DiscrepancyRead.model_validate(row) for row in rows]


@router.get("/api/discrepancies/stats", response_model=DiscrepancyStatsRead)
def get_discrepancy_stats(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
) -> DiscrepancyStatsRead:
    _check_range(start_date, end_date)
    rows = list_discrepancies(db, start_date=start_date, end_date=end_date)
    return DiscrepancyStatsRead(**compute_stats(rows))


@router.get("/api/discrepancies/summary", response_model=list[RuleSummaryRead])
def get_discrepancy_summary(
    start_date: date = Query(...),
    end_date: date = Query(...),
    status: DiscrepancyStatus | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[RuleSummaryRead]:
    _check_range(start_date, end_date)
    rows = list_discrepancies(db, start_date=start_date, end_date=end_date, status=status)
    return [RuleSummaryRead.model_validate(item) for item in summarize_by_rule(rows)]


@router.post("/api/discrepancies/{discrepancy_id}/resolve", response_model=DiscrepancyRead)
def resolve_as_manager(
    discrepancy_id: int,
    payload: DiscrepancyResolveRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
) -> DiscrepancyRead:
    discrepancy = resolve_discrepancy(
        db,
        discrepancy_id=discrepancy_id,
        reason=payload.reason,
        note=payload.note,
        resolved_by=actor_id,
    )
    log_audit(
        db,
        actor_type=AuditActorType.MANAGER,
        actor_id=actor_id,
        action="DISCREPANCY_RESOLVED",
        entity=discrepancy,
        details={"reason": discrepancy.resolved_reason},
        request_id=get_request_id(request),
    )
    return DiscrepancyRead.model_validate(discrepancy)


@router.get("/api/member/discrepancies", response_model=list[DiscrepancyRead])
def get_member_discrepancies(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    status: DiscrepancyStatus | None = Query(default=None),
    employee_id: int = Depends(get_member_employee_id),
    db: Session = Depends(get_db),
) -> list[DiscrepancyRead]:
    _check_range(start_date, end_date)
    rows = list_discrepancies(
        db,
        start_date=start_date,
        end_date=end_date,
        employee_id=employee_id,
        status=status,
    )
    return [DiscrepancyRead.model_validate(row) for row in rows]


@router.post("/api/member/discrepancies/{discrepancy_id}/resolve", response_model=DiscrepancyRead)
def resolve_as_member(
    discrepancy_id: int,
    payload: DiscrepancyResolveRequest,
    request: Request,
    employee_id: int = Depends(get_member_employee_id),
    db: Session = Depends(get_db),
) -> DiscrepancyRead:
    resolver = f"{SELF_SERVICE_RESOLVER_PREFIX}{employee_id}"
    discrepancy = resolve_discrepancy(
        db,
        discrepancy_id=discrepancy_id,
        reason=payload.reason,
        note=payload.note,
        resolved_by=resolver,
        owner_employee_id=employee_id,
    )
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=str(employee_id),
        action="DISCREPANCY_SELF_RESOLVED",
        entity=discrepancy,
        details={"reason": discrepancy.resolved_reason},
        request_id=get_request_id(request),
    )
    return DiscrepancyRead.model_validate(discrepancy)
