"""Rule engine comparing logged work time with observed presence.

Every rule is an independent membership test over one employee-day; a day can
trigger several rules and LOG_AFTER_EXIT / OUTSIDE_HOURS fire once per
implicated entry. Evidence is a per-rule dataclass so each rule only carries
the fields it needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, ClassVar, Union
from zoneinfo import ZoneInfo

from punch_audit.models import AttendanceStatus, DiscrepancyRule, DiscrepancySeverity
from punch_audit.services.pairing import InOutPeriod
from punch_audit.services.punches import to_local
from punch_audit.settings import AttendanceRules

RULE_SEVERITY: dict[DiscrepancyRule, DiscrepancySeverity] = {
    DiscrepancyRule.LOG_AFTER_EXIT: DiscrepancySeverity.HIGH,
    DiscrepancyRule.NO_ATTENDANCE: DiscrepancySeverity.HIGH,
    DiscrepancyRule.OUTSIDE_HOURS: DiscrepancySeverity.LOW,
    DiscrepancyRule.ZERO_PRESENCE: DiscrepancySeverity.MEDIUM,
}

RULE_TITLES: dict[DiscrepancyRule, tuple[str, str]] = {
    DiscrepancyRule.LOG_AFTER_EXIT: (
        "Logged During OUT Periods",
        "members logged time during a recorded OUT period or after leaving",
    ),
    DiscrepancyRule.NO_ATTENDANCE: (
        "Logged Without Attendance",
        "members logged time without attendance record",
    ),
    DiscrepancyRule.OUTSIDE_HOURS: (
        "After-Hours Logging",
        "members logged time outside work hours",
    ),
    DiscrepancyRule.ZERO_PRESENCE: (
        "High Logging with Minimal Presence",
        "members with high logged time but minimal office presence",
    ),
}


@dataclass(frozen=True)
class TimeEntryFact:
    task_id: str
    logged_at: datetime
    duration_ms: int
    start_at: datetime
    end_at: datetime | None = None
    entry_id: int | None = None

    @property
    def minutes(self) -> int:
        return round_minutes(self.duration_ms)


@dataclass(frozen=True)
class AttendanceDay:
    status: AttendanceStatus
    total_hours: float
    periods: tuple[InOutPeriod, ...] = ()
    unpaired_ins: tuple[datetime, ...] = ()
    last_out: datetime | None = None


@dataclass(frozen=True)
class LogAfterExitEvidence:
    rule: ClassVar[DiscrepancyRule] = DiscrepancyRule.LOG_AFTER_EXIT

    task_id: str
    logged_at: datetime
    out_period_start: datetime
    out_period_end: datetime | None
    entry_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule.value,
            "task_id": self.task_id,
            "entry_id": self.entry_id,
            "logged_at": self.logged_at.isoformat(),
            "out_period": {
                "start": self.out_period_start.isoformat(),
                "end": self.out_period_end.isoformat() if self.out_period_end else None,
            },
        }


@dataclass(frozen=True)
class NoAttendanceEvidence:
    rule: ClassVar[DiscrepancyRule] = DiscrepancyRule.NO_ATTENDANCE

    entry_count: int
    total_logged_minutes: int
    attendance_status: AttendanceStatus | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule.value,
            "entry_count": self.entry_count,
            "total_logged_minutes": self.total_logged_minutes,
            "attendance_status": self.attendance_status.value if self.attendance_status else None,
        }


@dataclass(frozen=True)
class OutsideHoursEvidence:
    rule: ClassVar[DiscrepancyRule] = DiscrepancyRule.OUTSIDE_HOURS

    task_id: str
    logged_at: datetime
    logged_minute: int
    workday_start_minute: int
    workday_end_minute: int
    entry_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule.value,
            "task_id": self.task_id,
            "entry_id": self.entry_id,
            "logged_at": self.logged_at.isoformat(),
            "logged_minute": self.logged_minute,
            "workday_start_minute": self.workday_start_minute,
            "workday_end_minute": self.workday_end_minute,
        }


@dataclass(frozen=True)
class ZeroPresenceEvidence:
    rule: ClassVar[DiscrepancyRule] = DiscrepancyRule.ZERO_PRESENCE

    presence_minutes: int
    logged_minutes: int
    attendance_status: AttendanceStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule.value,
            "presence_minutes": self.presence_minutes,
            "logged_minutes": self.logged_minutes,
            "attendance_status": self.attendance_status.value,
        }


Evidence = Union[LogAfterExitEvidence, NoAttendanceEvidence, OutsideHoursEvidence, ZeroPresenceEvidence]


@dataclass(frozen=True)
class DetectedDiscrepancy:
    day_date: date
    rule: DiscrepancyRule
    severity: DiscrepancySeverity
    minutes_involved: int
    evidence: Evidence


def round_minutes(duration_ms: int) -> int:
    # Half-up to whole minutes.
    return int((max(0, duration_ms) + 30_000) // 60_000)


def _minute_of_day(ts: datetime) -> int:
    return ts.hour * 60 + ts.minute


def _localize_attendance(attendance: AttendanceDay, tz: ZoneInfo) -> AttendanceDay:
    return AttendanceDay(
        status=attendance.status,
        total_hours=attendance.total_hours,
        periods=tuple(
            InOutPeriod(in_ts=to_local(period.in_ts, tz), out_ts=to_local(period.out_ts, tz))
            for period in attendance.periods
        ),
        unpaired_ins=tuple(to_local(ts, tz) for ts in attendance.unpaired_ins),
        last_out=to_local(attendance.last_out, tz) if attendance.last_out is not None else None,
    )


def find_out_period(
    logged_at: datetime,
    attendance: AttendanceDay,
) -> tuple[datetime, datetime | None] | None:
    """Return the OUT gap enclosing ``logged_at``, or None while present.

    Gaps sit strictly between one period's OUT and the next period's IN. After
    the last OUT the gap is open-ended unless a later IN shows the person came
    back without punching out.
    """
    periods = sorted(attendance.periods, key=lambda item: item.in_ts)
    for current, following in zip(periods, periods[1:]):
        if current.out_ts < logged_at < following.in_ts:
            return current.out_ts, following.in_ts

    last_out = attendance.last_out
    if last_out is None or logged_at <= last_out:
        return None
    returned_after_exit = any(period.in_ts > last_out for period in periods) or any(
        ts > last_out for ts in attendance.unpaired_ins
    )
    if returned_after_exit:
        return None
    return last_out, None


def evaluate_day(
    *,
    day_date: date,
    attendance: AttendanceDay | None,
    entries: list[TimeEntryFact],
    rules: AttendanceRules,
) -> list[DetectedDiscrepancy]:
    if not entries:
        return []

    tz = rules.timezone
    total_logged_minutes = round_minutes(sum(entry.duration_ms for entry in entries))
    ordered_entries = sorted(entries, key=lambda item: to_local(item.logged_at, tz))
    results: list[DetectedDiscrepancy] = []

    if attendance is not None:
        attendance = _localize_attendance(attendance, tz)
        for entry in ordered_entries:
            logged_local = to_local(entry.logged_at, tz)
            gap = find_out_period(logged_local, attendance)
            if gap is None:
                continue
            results.append(
                DetectedDiscrepancy(
                    day_date=day_date,
                    rule=DiscrepancyRule.LOG_AFTER_EXIT,
                    severity=RULE_SEVERITY[DiscrepancyRule.LOG_AFTER_EXIT],
                    minutes_involved=entry.minutes,
                    evidence=LogAfterExitEvidence(
                        task_id=entry.task_id,
                        entry_id=entry.entry_id,
                        logged_at=logged_local,
                        out_period_start=gap[0],
                        out_period_end=gap[1],
                    ),
                )
            )

    if attendance is None or attendance.status == AttendanceStatus.ABSENT:
        results.append(
            DetectedDiscrepancy(
                day_date=day_date,
                rule=DiscrepancyRule.NO_ATTENDANCE,
                severity=RULE_SEVERITY[DiscrepancyRule.NO_ATTENDANCE],
                minutes_involved=total_logged_minutes,
                evidence=NoAttendanceEvidence(
                    entry_count=len(entries),
                    total_logged_minutes=total_logged_minutes,
                    attendance_status=attendance.status if attendance is not None else None,
                ),
            )
        )

    for entry in ordered_entries:
        logged_local = to_local(entry.logged_at, tz)
        logged_minute = _minute_of_day(logged_local)
        if rules.workday_start_minute <= logged_minute <= rules.workday_end_minute:
            continue
        results.append(
            DetectedDiscrepancy(
                day_date=day_date,
                rule=DiscrepancyRule.OUTSIDE_HOURS,
                severity=RULE_SEVERITY[DiscrepancyRule.OUTSIDE_HOURS],
                minutes_involved=entry.minutes,
                evidence=OutsideHoursEvidence(
                    task_id=entry.task_id,
                    entry_id=entry.entry_id,
                    logged_at=logged_local,
                    logged_minute=logged_minute,
                    workday_start_minute=rules.workday_start_minute,
                    workday_end_minute=rules.workday_end_minute,
                ),
            )
        )

    if attendance is not None:
        presence_minutes = attendance.total_hours * 60
        if (
            attendance.total_hours < rules.near_zero_presence_hours
            and total_logged_minutes > rules.material_log_minutes
        ):
            results.append(
                DetectedDiscrepancy(
                    day_date=day_date,
                    rule=DiscrepancyRule.ZERO_PRESENCE,
                    severity=RULE_SEVERITY[DiscrepancyRule.ZERO_PRESENCE],
                    minutes_involved=total_logged_minutes,
                    evidence=ZeroPresenceEvidence(
                        presence_minutes=int(round(presence_minutes)),
                        logged_minutes=total_logged_minutes,
                        attendance_status=attendance.status,
                    ),
                )
            )

    return results
