from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from punch_audit.services.punches import Punch, PunchDirection


@dataclass(frozen=True)
class InOutPeriod:
    in_ts: datetime
    out_ts: datetime

    @property
    def duration_hours(self) -> float:
        return (self.out_ts - self.in_ts).total_seconds() / 3600

    def to_dict(self) -> dict[str, str]:
        return {"in": self.in_ts.isoformat(), "out": self.out_ts.isoformat()}


@dataclass(frozen=True)
class PairingResult:
    periods: list[InOutPeriod] = field(default_factory=list)
    unpaired_ins: list[datetime] = field(default_factory=list)
    unpaired_outs: list[datetime] = field(default_factory=list)
    first_in: datetime | None = None
    last_out: datetime | None = None

    @property
    def has_punches(self) -> bool:
        return bool(self.periods or self.unpaired_ins or self.unpaired_outs)


def _sort_key(punch: Punch) -> tuple[datetime, int]:
    # Same-instant OUT closes the previous period before the next IN opens.
    return punch.ts, 0 if punch.direction == PunchDirection.OUT else 1


def pair_punches(punches: list[Punch]) -> PairingResult:
    """Rebuild IN/OUT periods for one employee-day.

    At most one IN is pending at a time. A second IN before any OUT pushes the
    earlier one to ``unpaired_ins``; an OUT with nothing pending goes to
    ``unpaired_outs``.
    """
    ordered = sorted(set(punches), key=_sort_key)

    periods: list[InOutPeriod] = []
    unpaired_ins: list[datetime] = []
    unpaired_outs: list[datetime] = []
    pending_in: datetime | None = None

    for punch in ordered:
        if punch.direction == PunchDirection.IN:
            if pending_in is not None:
                unpaired_ins.append(pending_in)
            pending_in = punch.ts
            continue

        if pending_in is not None:
            periods.append(InOutPeriod(in_ts=pending_in, out_ts=punch.ts))
            pending_in = None
        else:
            unpaired_outs.append(punch.ts)

    if pending_in is not None:
        unpaired_ins.append(pending_in)

    in_candidates = [period.in_ts for period in periods] + unpaired_ins
    out_candidates = [period.out_ts for period in periods] + unpaired_outs

    return PairingResult(
        periods=periods,
        unpaired_ins=unpaired_ins,
        unpaired_outs=unpaired_outs,
        first_in=min(in_candidates) if in_candidates else None,
        last_out=max(out_candidates) if out_candidates else None,
    )
