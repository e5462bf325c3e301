from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from punch_audit.errors import ApiError
from punch_audit.models import Employee, TimeEntry
from punch_audit.schemas import TimeEntryCreate
from punch_audit.services.discrepancy_rules import TimeEntryFact
from punch_audit.services.punches import to_local
from punch_audit.settings import AttendanceRules, get_attendance_rules

logger = logging.getLogger("punch_audit.time_entries")


def _normalize_ts(ts: datetime, rules: AttendanceRules) -> datetime:
    # Offset-less times are site wall-clock time, same as punches.
    return to_local(ts, rules.timezone).astimezone(timezone.utc)


def sync_time_entries(
    db: Session,
    payload: list[TimeEntryCreate],
    *,
    rules: AttendanceRules | None = None,
) -> tuple[int, int]:
    """Insert entries not seen before; synced entries are never rewritten.

    Returns ``(inserted, skipped)``.
    """
    if not payload:
        return 0, 0
    rules = rules or get_attendance_rules()

    employee_ids = {item.employee_id for item in payload}
    known_employees = set(db.scalars(select(Employee.id).where(Employee.id.in_(employee_ids))).all())
    missing = sorted(employee_ids - known_employees)
    if missing:
        raise ApiError(
            status_code=404,
            code="EMPLOYEE_NOT_FOUND",
            message="Time entries reference unknown employees.",
            details={"employee_ids": missing},
        )

    external_ids = [item.external_id for item in payload]
    existing = set(db.scalars(select(TimeEntry.external_id).where(TimeEntry.external_id.in_(external_ids))).all())

    inserted = 0
    seen: set[str] = set()
    for item in payload:
        if item.external_id in existing or item.external_id in seen:
            continue
        seen.add(item.external_id)
        db.add(
            TimeEntry(
                external_id=item.external_id,
                employee_id=item.employee_id,
                task_id=item.task_id,
                task_name=item.task_name,
                logged_at=_normalize_ts(item.logged_at, rules),
                start_at=_normalize_ts(item.start_at, rules),
                end_at=_normalize_ts(item.end_at, rules) if item.end_at is not None else None,
                duration_ms=item.duration_ms,
            )
        )
        inserted += 1

    db.commit()
    skipped = len(payload) - inserted
    logger.info("time_entries_synced", extra={"inserted": inserted, "skipped": skipped})
    return inserted, skipped


def list_time_entries_in_range(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    rules: AttendanceRules,
    employee_id: int | None = None,
) -> list[TimeEntry]:
    tz = rules.timezone
    range_start = datetime.combine(start_date, time.min, tzinfo=tz).astimezone(timezone.utc)
    range_end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)
    stmt = select(TimeEntry).where(
        TimeEntry.start_at >= range_start,
        TimeEntry.start_at < range_end,
    )
    if employee_id is not None:
        stmt = stmt.where(TimeEntry.employee_id == employee_id)
    return list(db.scalars(stmt.order_by(TimeEntry.start_at.asc(), TimeEntry.id.asc())).all())


def entry_local_day(entry: TimeEntry, rules: AttendanceRules) -> date:
    return to_local(entry.start_at, rules.timezone).date()


def to_fact(entry: TimeEntry) -> TimeEntryFact:
    return TimeEntryFact(
        task_id=entry.task_id,
        logged_at=entry.logged_at,
        duration_ms=int(entry.duration_ms),
        start_at=entry.start_at,
        end_at=entry.end_at,
        entry_id=entry.id,
    )
