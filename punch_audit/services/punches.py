from __future__ import annotations

import enum
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from punch_audit.services.identity import IdentityResolver, normalize_name

logger = logging.getLogger("punch_audit.punches")

DROP_INVALID_TIMESTAMP = "INVALID_TIMESTAMP"
DROP_UNKNOWN_DIRECTION = "UNKNOWN_DIRECTION"
DROP_MISSING_NAME = "MISSING_NAME"
DROP_OUT_OF_RANGE = "OUT_OF_RANGE"

_TIMESTAMP_FORMATS = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y_%H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
)


class PunchDirection(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


# Device "mcid" codes: 1 = entrance reader, 2 = exit reader.
_DIRECTION_CODES = {
    "1": PunchDirection.IN,
    "IN": PunchDirection.IN,
    "I": PunchDirection.IN,
    "2": PunchDirection.OUT,
    "OUT": PunchDirection.OUT,
    "O": PunchDirection.OUT,
}


@dataclass(frozen=True)
class RawPunch:
    name: str
    employee_code: str | None
    timestamp: Any
    direction_code: Any


@dataclass(frozen=True)
class Punch:
    ts: datetime
    direction: PunchDirection


@dataclass
class EmployeeDayPunches:
    employee_name: str
    employee_code: str | None
    employee_id: int | None
    day_date: date
    punches: list[Punch] = field(default_factory=list)


@dataclass
class NormalizationResult:
    days: list[EmployeeDayPunches]
    received: int
    dropped: Counter = field(default_factory=Counter)
    unmatched_names: list[str] = field(default_factory=list)

    @property
    def dropped_count(self) -> int:
        return sum(self.dropped.values())


def parse_direction(code: Any) -> PunchDirection | None:
    if isinstance(code, PunchDirection):
        return code
    if code is None:
        return None
    if isinstance(code, float) and code.is_integer():
        code = int(code)
    return _DIRECTION_CODES.get(str(code).strip().upper())


def parse_punch_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def to_local(ts: datetime, tz: ZoneInfo) -> datetime:
    # Naive timestamps are already wall-clock time at the site.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=tz)
    return ts.astimezone(tz)


def normalize_punches(
    raw_punches: list[RawPunch],
    *,
    resolver: IdentityResolver,
    tz: ZoneInfo,
) -> NormalizationResult:
    """Validate raw punches and group them by employee and local calendar day.

    Malformed punches are dropped and counted; unmatched names are kept under
    the raw name with no roster id.
    """
    dropped: Counter = Counter()
    groups: dict[tuple[str, str, date], EmployeeDayPunches] = {}
    unmatched: dict[str, str] = {}

    for raw in raw_punches:
        display_name = " ".join((raw.name or "").split())
        if not display_name:
            dropped[DROP_MISSING_NAME] += 1
            continue
        parsed_ts = parse_punch_timestamp(raw.timestamp)
        if parsed_ts is None:
            dropped[DROP_INVALID_TIMESTAMP] += 1
            continue
        direction = parse_direction(raw.direction_code)
        if direction is None:
            dropped[DROP_UNKNOWN_DIRECTION] += 1
            continue

        local_ts = to_local(parsed_ts, tz)
        employee_code = (raw.employee_code or "").strip() or None
        match = resolver.resolve(display_name, employee_code)
        if match is None:
            identity_key = ("name", normalize_name(display_name))
            unmatched.setdefault(normalize_name(display_name), display_name)
        else:
            identity_key = ("id", str(match.id))

        key = (identity_key[0], identity_key[1], local_ts.date())
        bucket = groups.get(key)
        if bucket is None:
            bucket = EmployeeDayPunches(
                employee_name=match.canonical_name if match is not None else display_name,
                employee_code=employee_code or (match.employee_code if match is not None else None),
                employee_id=match.id if match is not None else None,
                day_date=local_ts.date(),
            )
            groups[key] = bucket
        elif bucket.employee_code is None and employee_code:
            bucket.employee_code = employee_code
        bucket.punches.append(Punch(ts=local_ts, direction=direction))

    days = sorted(groups.values(), key=lambda item: (item.day_date, item.employee_name.lower()))
    result = NormalizationResult(
        days=days,
        received=len(raw_punches),
        dropped=dropped,
        unmatched_names=sorted(unmatched.values(), key=str.lower),
    )
    logger.info(
        "punches_normalized",
        extra={
            "received": result.received,
            "dropped": result.dropped_count,
            "dropped_by_reason": dict(dropped),
            "employee_days": len(days),
            "unmatched_names": len(result.unmatched_names),
        },
    )
    return result
