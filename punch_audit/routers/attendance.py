from datetime import date

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from sqlalchemy.orm import Session

from punch_audit.audit import actor_type_for, log_audit
from punch_audit.db import get_db
from punch_audit.errors import ApiError, get_request_id
from punch_audit.models import SyncBatchSource
from punch_audit.routers.deps import get_actor_id, get_rules
from punch_audit.schemas import (
    AttendanceRecordRead,
    PunchSyncRequest,
    PunchSyncResponse,
    SyncBatchRead,
    TimeEntrySyncRequest,
    TimeEntrySyncResponse,
)
from punch_audit.services.attendance import ingest_punches, list_attendance_records
from punch_audit.services.punches import RawPunch
from punch_audit.services.spreadsheet import read_punch_workbook
from punch_audit.services.time_entries import sync_time_entries
from punch_audit.settings import AttendanceRules

router = APIRouter(tags=["attendance"])
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def _sync_response(request: Request, db: Session, actor_id: str, batch, normalized) -> PunchSyncResponse:  # type: ignore[no-untyped-def]
    request.state.batch_id = batch.id
    log_audit(
        db,
        actor_type=actor_type_for(actor_id),
        actor_id=actor_id,
        action=f"PUNCH_BATCH_{batch.source.value}",
        entity=batch,
        details={
            "punches_received": batch.punches_received,
            "punches_dropped": batch.punches_dropped,
            "records_written": batch.records_written,
        },
        request_id=get_request_id(request),
    )
    return PunchSyncResponse(
        batch=SyncBatchRead.model_validate(batch),
        dropped_by_reason=dict(normalized.dropped),
    )


@router.post("/api/attendance/sync", response_model=PunchSyncResponse)
def sync_punches(
    payload: PunchSyncRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    rules: AttendanceRules = Depends(get_rules),
) -> PunchSyncResponse:
    raw_punches = [
        RawPunch(
            name=item.name or "",
            employee_code=item.employee_code,
            timestamp=item.timestamp,
            direction_code=item.direction_code,
        )
        for item in payload.punches
    ]
    batch, normalized = ingest_punches(
        db,
        raw_punches,
        source=SyncBatchSource.SYNC,
        created_by=actor_id,
        range_start=payload.start_date,
        range_end=payload.end_date,
        rules=rules,
    )
    return _sync_response(request, db, actor_id, batch, normalized)


@router.post("/api/attendance/upload", response_model=PunchSyncResponse)
async def upload_punches(
    request: Request,
    file: UploadFile = File(...),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_actor_id),
    rules: AttendanceRules = Depends(get_rules),
) -> PunchSyncResponse:
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_RANGE", message="end_date must not precede start_date.")
    content = await file.read()
    if not content:
        raise ApiError(status_code=422, code="EMPTY_UPLOAD", message="Uploaded file is empty.")
    if len(content) > MAX_UPLOAD_BYTES:
        raise ApiError(status_code=413, code="UPLOAD_TOO_LARGE", message="Uploaded file is too large.")

    raw_punches = read_punch_workbook(content)
    batch, normalized = ingest_punches(
        db,
        raw_punches,
        source=SyncBatchSource.UPLOAD,
        created_by=actor_id,
        range_start=start_date,
        range_end=end_date,
        rules=rules,
    )
    return _sync_response(request, db, actor_id, batch, normalized)


@router.get("/api/attendance/records", response_model=list[AttendanceRecordRead])
def get_attendance_records(
    start_date: date = Query(...),
    end_date: date = Query(...),
    employee_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[AttendanceRecordRead]:
    if end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_RANGE", message="end_date must not precede start_date.")
    records = list_attendance_records(db, start_date=start_date, end_date=end_date, employee_id=employee_id)
    return [AttendanceRecordRead.model_validate(record) for record in records]


@router.post("/api/time-entries/sync", response_model=TimeEntrySyncResponse)
def sync_entries(
    payload: TimeEntrySyncRequest,
    db: Session = Depends(get_db),
    rules: AttendanceRules = Depends(get_rules),
) -> TimeEntrySyncResponse:
    inserted, skipped = sync_time_entries(db, payload.entries, rules=rules)
    return TimeEntrySyncResponse(inserted=inserted, skipped=skipped)
