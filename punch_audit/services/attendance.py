from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import ColumnElement, delete, select
from sqlalchemy.orm import Session

from punch_audit.models import AttendanceRecord, Employee, SyncBatch, SyncBatchSource
from punch_audit.services.attendance_calc import DayClassification, classify_day
from punch_audit.services.discrepancy_rules import AttendanceDay
from punch_audit.services.identity import IdentityResolver, RosterEntry, SubstringRosterResolver
from punch_audit.services.pairing import InOutPeriod, PairingResult, pair_punches
from punch_audit.services.punches import (
    DROP_OUT_OF_RANGE,
    EmployeeDayPunches,
    NormalizationResult,
    RawPunch,
    normalize_punches,
)
from punch_audit.settings import AttendanceRules, get_attendance_rules

logger = logging.getLogger("punch_audit.attendance")


@dataclass(frozen=True)
class AttendanceDraft:
    employee_name: str
    employee_code: str | None
    employee_id: int | None
    day_date: date
    pairing: PairingResult
    classification: DayClassification

    def to_model(self, *, batch_id: int | None) -> AttendanceRecord:
        return AttendanceRecord(
            employee_name=self.employee_name,
            employee_code=self.employee_code,
            employee_id=self.employee_id,
            day_date=self.day_date,
            in_out_periods=[period.to_dict() for period in self.pairing.periods],
            unpaired_ins=[ts.isoformat() for ts in self.pairing.unpaired_ins],
            unpaired_outs=[ts.isoformat() for ts in self.pairing.unpaired_outs],
            first_in=self.pairing.first_in,
            last_out=self.pairing.last_out,
            total_hours=self.classification.total_hours,
            status=self.classification.status,
            shift=self.classification.shift,
            is_overtime=self.classification.is_overtime,
            batch_id=batch_id,
        )


def build_attendance_draft(day: EmployeeDayPunches, rules: AttendanceRules) -> AttendanceDraft:
    pairing = pair_punches(day.punches)
    return AttendanceDraft(
        employee_name=day.employee_name,
        employee_code=day.employee_code,
        employee_id=day.employee_id,
        day_date=day.day_date,
        pairing=pairing,
        classification=classify_day(pairing, rules),
    )


def build_attendance_drafts(normalized: NormalizationResult, rules: AttendanceRules) -> list[AttendanceDraft]:
    return [build_attendance_draft(day, rules) for day in normalized.days]


def load_roster(db: Session) -> list[RosterEntry]:
    rows = db.scalars(
        select(Employee).where(Employee.is_active.is_(True)).order_by(Employee.id.asc())
    ).all()
    return [
        RosterEntry(id=row.id, canonical_name=row.full_name, employee_code=row.employee_code)
        for row in rows
    ]


def _covered_days(drafts: list[AttendanceDraft], batch: SyncBatch) -> ColumnElement[bool] | None:
    if batch.range_start is not None and batch.range_end is not None:
        return AttendanceRecord.day_date.between(batch.range_start, batch.range_end)
    days = sorted({draft.day_date for draft in drafts})
    if not days:
        return None
    return AttendanceRecord.day_date.in_(days)


def replace_attendance_days(
    db: Session,
    drafts: list[AttendanceDraft],
    *,
    batch: SyncBatch,
) -> list[AttendanceRecord]:
    """Replace every stored record on the days the batch covers, in one commit.

    Covered days are cleared for every employee, including rows stored under a
    raw name that now resolves to the roster. An explicit batch range covers
    the whole range even when some of its days carry no punches.
    """
    covered = _covered_days(drafts, batch)
    if covered is not None:
        db.execute(delete(AttendanceRecord).where(covered))

    records = [draft.to_model(batch_id=batch.id) for draft in drafts]
    db.add_all(records)
    batch.records_written = len(records)
    db.commit()
    logger.info(
        "attendance_batch_replaced",
        extra={
            "batch_id": batch.id,
            "source": batch.source.value,
            "days": len({draft.day_date for draft in drafts}),
            "records_written": len(records),
        },
    )
    return records


def ingest_punches(
    db: Session,
    raw_punches: list[RawPunch],
    *,
    source: SyncBatchSource,
    created_by: str,
    range_start: date | None = None,
    range_end: date | None = None,
    rules: AttendanceRules | None = None,
    resolver: IdentityResolver | None = None,
) -> tuple[SyncBatch, NormalizationResult]:
    rules = rules or get_attendance_rules()
    resolver = resolver or SubstringRosterResolver(load_roster(db))

    normalized = normalize_punches(raw_punches, resolver=resolver, tz=rules.timezone)
    if range_start is not None or range_end is not None:
        kept: list[EmployeeDayPunches] = []
        for day in normalized.days:
            if (range_start is None or day.day_date >= range_start) and (range_end is None or day.day_date <= range_end):
                kept.append(day)
            else:
                normalized.dropped[DROP_OUT_OF_RANGE] += len(day.punches)
        normalized.days = kept
    drafts = build_attendance_drafts(normalized, rules)

    batch = SyncBatch(
        source=source,
        range_start=range_start,
        range_end=range_end,
        punches_received=normalized.received,
        punches_dropped=normalized.dropped_count,
        unmatched_names=list(normalized.unmatched_names),
        created_by=created_by,
    )
    db.add(batch)
    db.flush()
    replace_attendance_days(db, drafts, batch=batch)
    return batch, normalized


def list_attendance_records(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    employee_id: int | None = None,
) -> list[AttendanceRecord]:
    stmt = select(AttendanceRecord).where(
        AttendanceRecord.day_date >= start_date,
        AttendanceRecord.day_date <= end_date,
    )
    if employee_id is not None:
        stmt = stmt.where(AttendanceRecord.employee_id == employee_id)
    stmt = stmt.order_by(AttendanceRecord.day_date.asc(), AttendanceRecord.employee_name.asc())
    return list(db.scalars(stmt).all())


def attendance_day_from_record(record: AttendanceRecord) -> AttendanceDay:
    periods = tuple(
        InOutPeriod(
            in_ts=datetime.fromisoformat(item["in"]),
            out_ts=datetime.fromisoformat(item["out"]),
        )
        for item in (record.in_out_periods or [])
    )
    return AttendanceDay(
        status=record.status,
        total_hours=float(record.total_hours or 0.0),
        periods=periods,
        unpaired_ins=tuple(datetime.fromisoformat(item) for item in (record.unpaired_ins or [])),
        last_out=record.last_out,
    )


def pick_attendance_for_day(records: list[AttendanceRecord]) -> AttendanceRecord | None:
    """Several records can link to one employee-day; the one with most presence wins."""
    if not records:
        return None
    return max(records, key=lambda item: (float(item.total_hours or 0.0), -item.id if item.id else 0))
