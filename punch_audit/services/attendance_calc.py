from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from punch_audit.models import AttendanceStatus
from punch_audit.services.pairing import PairingResult
from punch_audit.settings import MINUTES_PER_DAY, AttendanceRules, ShiftWindow


@dataclass(frozen=True)
class DayClassification:
    total_hours: float
    status: AttendanceStatus
    shift: str | None
    is_overtime: bool


def _minutes_of_day(ts: datetime) -> int:
    return ts.hour * 60 + ts.minute


def _circular_minutes_diff(a: int, b: int) -> int:
    diff = abs(a - b) % MINUTES_PER_DAY
    return min(diff, MINUTES_PER_DAY - diff)


def _window_overlap_minutes(window: ShiftWindow, start_minute: int, end_minute: int) -> int:
    window_start = window.start_minute
    window_end = window_start + window.length_minutes
    overlap = 0
    # Overnight windows are also tried shifted back one day.
    for offset in (0, -MINUTES_PER_DAY):
        lo = max(start_minute, window_start + offset)
        hi = min(end_minute, window_end + offset)
        overlap = max(overlap, hi - lo)
    return max(0, overlap)


def resolve_shift(
    windows: tuple[ShiftWindow, ...],
    *,
    first_in: datetime | None,
    last_out: datetime | None,
) -> str | None:
    """Pick the shift that best covers the day's presence span.

    With both ends known the window with the largest overlap wins; otherwise
    the window whose start is closest to the one known punch.
    """
    if not windows or (first_in is None and last_out is None):
        return None

    if first_in is not None and last_out is not None and last_out > first_in:
        start_minute = _minutes_of_day(first_in)
        end_minute = start_minute + int((last_out - first_in).total_seconds() // 60)
        best: ShiftWindow | None = None
        best_overlap = 0
        for window in windows:
            overlap = _window_overlap_minutes(window, start_minute, end_minute)
            if overlap > best_overlap:
                best = window
                best_overlap = overlap
        if best is not None:
            return best.name

    if first_in is not None:
        in_minute = _minutes_of_day(first_in)
        return min(windows, key=lambda w: _circular_minutes_diff(in_minute, w.start_minute)).name
    out_minute = _minutes_of_day(last_out)  # type: ignore[arg-type]
    return min(windows, key=lambda w: _circular_minutes_diff(out_minute, w.end_minute)).name


def classify_status(*, has_periods: bool, has_punches: bool, total_hours: float, min_presence_hours: float) -> AttendanceStatus:
    if has_periods and total_hours >= min_presence_hours:
        return AttendanceStatus.PRESENT
    if has_punches:
        return AttendanceStatus.PARTIAL
    return AttendanceStatus.ABSENT


def classify_day(pairing: PairingResult, rules: AttendanceRules) -> DayClassification:
    total_hours = sum(period.duration_hours for period in pairing.periods)
    status = classify_status(
        has_periods=bool(pairing.periods),
        has_punches=pairing.has_punches,
        total_hours=total_hours,
        min_presence_hours=rules.min_presence_hours,
    )
    return DayClassification(
        total_hours=total_hours,
        status=status,
        shift=resolve_shift(rules.shift_windows, first_in=pairing.first_in, last_out=pairing.last_out),
        is_overtime=total_hours > rules.standard_shift_hours,
    )
