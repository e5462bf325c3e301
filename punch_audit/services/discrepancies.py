from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import case, delete, select
from sqlalchemy.orm import Session

from punch_audit.models import (
    AttendanceRecord,
    Discrepancy,
    DiscrepancyRule,
    DiscrepancySeverity,
    DiscrepancyStatus,
    Employee,
)
from punch_audit.services.attendance import attendance_day_from_record, pick_attendance_for_day
from punch_audit.services.discrepancy_rules import RULE_TITLES, DetectedDiscrepancy, evaluate_day
from punch_audit.services.time_entries import entry_local_day, list_time_entries_in_range, to_fact
from punch_audit.settings import AttendanceRules, get_attendance_rules

logger = logging.getLogger("punch_audit.discrepancies")

SEVERITY_ORDER = {
    DiscrepancySeverity.LOW: 1,
    DiscrepancySeverity.MEDIUM: 2,
    DiscrepancySeverity.HIGH: 3,
}


@dataclass
class DetectionRunResult:
    start_date: date
    end_date: date
    employee_days_evaluated: int = 0
    cleared_open: int = 0
    created: list[Discrepancy] = field(default_factory=list)

    @property
    def created_by_rule(self) -> dict[str, int]:
        counts = Counter(item.rule.value for item in self.created)
        return dict(counts)


@dataclass(frozen=True)
class RuleSummary:
    rule: DiscrepancyRule
    count: int
    severity: DiscrepancySeverity
    title: str
    description: str
    affected_employee_ids: list[int]


def _to_model(employee_id: int, detected: DetectedDiscrepancy) -> Discrepancy:
    return Discrepancy(
        employee_id=employee_id,
        day_date=detected.day_date,
        rule=detected.rule,
        severity=detected.severity,
        minutes_involved=detected.minutes_involved,
        status=DiscrepancyStatus.OPEN,
        evidence=detected.evidence.to_dict(),
    )


def clear_open_discrepancies(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    employee_id: int | None = None,
) -> int:
    # Resolved rows are history and are never cleared.
    stmt = delete(Discrepancy).where(
        Discrepancy.day_date >= start_date,
        Discrepancy.day_date <= end_date,
        Discrepancy.status == DiscrepancyStatus.OPEN,
    )
    if employee_id is not None:
        stmt = stmt.where(Discrepancy.employee_id == employee_id)
    result = db.execute(stmt)
    return int(result.rowcount or 0)


def run_detection(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    employee_id: int | None = None,
    clear_open: bool = False,
    rules: AttendanceRules | None = None,
) -> DetectionRunResult:
    """Evaluate every employee-day in the range and append what the rules find.

    Runs are not coordinated with each other; callers serialize overlapping
    ranges. Without ``clear_open`` a re-run appends duplicates.
    """
    rules = (rules or get_attendance_rules()).validate()
    run = DetectionRunResult(start_date=start_date, end_date=end_date)

    employee_stmt = select(Employee.id).where(Employee.is_active.is_(True))
    if employee_id is not None:
        employee_stmt = employee_stmt.where(Employee.id == employee_id)
    employee_ids = list(db.scalars(employee_stmt.order_by(Employee.id.asc())).all())

    record_stmt = select(AttendanceRecord).where(
        AttendanceRecord.day_date >= start_date,
        AttendanceRecord.day_date <= end_date,
        AttendanceRecord.employee_id.is_not(None),
    )
    records_by_day: dict[tuple[int, date], list[AttendanceRecord]] = defaultdict(list)
    for record in db.scalars(record_stmt).all():
        records_by_day[(record.employee_id, record.day_date)].append(record)

    entries_by_day: dict[tuple[int, date], list] = defaultdict(list)
    for entry in list_time_entries_in_range(
        db,
        start_date=start_date,
        end_date=end_date,
        rules=rules,
        employee_id=employee_id,
    ):
        entries_by_day[(entry.employee_id, entry_local_day(entry, rules))].append(entry)

    if clear_open:
        run.cleared_open = clear_open_discrepancies(
            db,
            start_date=start_date,
            end_date=end_date,
            employee_id=employee_id,
        )

    allowed = set(employee_ids)
    for (emp_id, day_date), entries in sorted(entries_by_day.items(), key=lambda item: (item[0][1], item[0][0])):
        if emp_id not in allowed:
            continue
        run.employee_days_evaluated += 1
        record = pick_attendance_for_day(records_by_day.get((emp_id, day_date), []))
        detected = evaluate_day(
            day_date=day_date,
            attendance=attendance_day_from_record(record) if record is not None else None,
            entries=[to_fact(entry) for entry in entries],
            rules=rules,
        )
        for item in detected:
            model = _to_model(emp_id, item)
            db.add(model)
            run.created.append(model)

    db.commit()
    logger.info(
        "discrepancy_detection_complete",
        extra={
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "employee_days": run.employee_days_evaluated,
            "cleared_open": run.cleared_open,
            "created": len(run.created),
            "created_by_rule": run.created_by_rule,
        },
    )
    return run


def list_discrepancies(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    employee_id: int | None = None,
    status: DiscrepancyStatus | None = None,
) -> list[Discrepancy]:
    severity_rank = case(
        {severity: rank for severity, rank in SEVERITY_ORDER.items()},
        value=Discrepancy.severity,
    )
    stmt = select(Discrepancy)
    if start_date is not None:
        stmt = stmt.where(Discrepancy.day_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(Discrepancy.day_date <= end_date)
    if employee_id is not None:
        stmt = stmt.where(Discrepancy.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(Discrepancy.status == status)
    stmt = stmt.order_by(severity_rank.desc(), Discrepancy.day_date.desc(), Discrepancy.id.asc())
    return list(db.scalars(stmt).all())


def summarize_by_rule(discrepancies: list[Discrepancy]) -> list[RuleSummary]:
    grouped: dict[DiscrepancyRule, list[Discrepancy]] = defaultdict(list)
    for item in discrepancies:
        grouped[item.rule].append(item)

    summaries: list[RuleSummary] = []
    for rule in DiscrepancyRule:
        items = grouped.get(rule)
        if not items:
            continue
        max_severity = max((item.severity for item in items), key=lambda value: SEVERITY_ORDER[value])
        title, description = RULE_TITLES[rule]
        summaries.append(
            RuleSummary(
                rule=rule,
                count=len(items),
                severity=max_severity,
                title=title,
                description=description,
                affected_employee_ids=sorted({item.employee_id for item in items}),
            )
        )
    return summaries


def compute_stats(discrepancies: list[Discrepancy]) -> dict[str, object]:
    by_rule = {rule.value: 0 for rule in DiscrepancyRule}
    by_severity = {severity.value: 0 for severity in DiscrepancySeverity}
    open_count = 0
    for item in discrepancies:
        by_rule[item.rule.value] += 1
        by_severity[item.severity.value] += 1
        if item.status == DiscrepancyStatus.OPEN:
            open_count += 1
    return {
        "total_discrepancies": len(discrepancies),
        "open_discrepancies": open_count,
        "resolved_discrepancies": len(discrepancies) - open_count,
        "by_rule": by_rule,
        "by_severity": by_severity,
    }
