from datetime import date, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from punch_audit.models import (
    AttendanceStatus,
    DiscrepancyRule,
    DiscrepancySeverity,
    DiscrepancyStatus,
    SyncBatchSource,
)


class RawPunchIn(BaseModel):
    name: str | None = Field(default=None, alias="Name")
    employee_code: str | None = Field(default=None, alias="Empcode")
    timestamp: str | datetime | None = Field(default=None, alias="PunchDate")
    direction_code: str | int | None = Field(default=None, alias="mcid")

    model_config = ConfigDict(populate_by_name=True)


class PunchSyncRequest(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    punches: list[RawPunchIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_range(self) -> "PunchSyncRequest":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        return self


class SyncBatchRead(BaseModel):
    id: int
    source: SyncBatchSource
    range_start: date | None = None
    range_end: date | None = None
    punches_received: int
    punches_dropped: int
    records_written: int
    unmatched_names: list[str]
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PunchSyncResponse(BaseModel):
    batch: SyncBatchRead
    dropped_by_reason: dict[str, int]


class InOutPeriodRead(BaseModel):
    in_ts: datetime = Field(alias="in")
    out_ts: datetime = Field(alias="out")

    model_config = ConfigDict(populate_by_name=True)


class AttendanceRecordRead(BaseModel):
    id: int
    employee_name: str
    employee_code: str | None
    employee_id: int | None
    day_date: date
    in_out_periods: list[InOutPeriodRead]
    unpaired_ins: list[datetime]
    unpaired_outs: list[datetime]
    first_in: datetime | None
    last_out: datetime | None
    total_hours: float
    status: AttendanceStatus
    shift: str | None
    is_overtime: bool
    batch_id: int | None

    model_config = ConfigDict(from_attributes=True)


class TimeEntryCreate(BaseModel):
    external_id: str = Field(min_length=1, max_length=128)
    employee_id: int = Field(ge=1)
    task_id: str = Field(min_length=1, max_length=128)
    task_name: str | None = Field(default=None, max_length=512)
    logged_at: datetime
    duration_ms: int = Field(ge=0)
    start_at: datetime
    end_at: datetime | None = None


class TimeEntrySyncRequest(BaseModel):
    entries: list[TimeEntryCreate] = Field(default_factory=list)


class TimeEntrySyncResponse(BaseModel):
    inserted: int
    skipped: int


class OutPeriodRead(BaseModel):
    start: datetime
    end: datetime | None = None


class LogAfterExitEvidenceRead(BaseModel):
    rule: Literal["LOG_AFTER_EXIT"]
    task_id: str
    entry_id: int | None = None
    logged_at: datetime
    out_period: OutPeriodRead


class NoAttendanceEvidenceRead(BaseModel):
    rule: Literal["NO_ATTENDANCE"]
    entry_count: int
    total_logged_minutes: int
    attendance_status: AttendanceStatus | None = None


class OutsideHoursEvidenceRead(BaseModel):
    rule: Literal["OUTSIDE_HOURS"]
    task_id: str
    entry_id: int | None = None
    logged_at: datetime
    logged_minute: int
    workday_start_minute: int
    workday_end_minute: int


class ZeroPresenceEvidenceRead(BaseModel):
    rule: Literal["ZERO_PRESENCE"]
    presence_minutes: int
    logged_minutes: int
    attendance_status: AttendanceStatus


EvidenceRead = Annotated[
    Union[
        LogAfterExitEvidenceRead,
        NoAttendanceEvidenceRead,
        OutsideHoursEvidenceRead,
        ZeroPresenceEvidenceRead,
    ],
    Field(discriminator="rule"),
]


class ResolutionContextRead(BaseModel):
    reason: str
    note: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None


class DiscrepancyRead(BaseModel):
    id: int
    employee_id: int
    day_date: date
    rule: DiscrepancyRule
    severity: DiscrepancySeverity
    minutes_involved: int
    status: DiscrepancyStatus
    evidence: EvidenceRead
    resolution: ResolutionContextRead | None = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def collect_resolution(cls, data):  # type: ignore[no-untyped-def]
        if isinstance(data, (dict, BaseModel)):
            return data
        resolution = None
        if getattr(data, "resolved_reason", None):
            resolution = {
                "reason": data.resolved_reason,
                "note": data.resolved_note,
                "resolved_by": data.resolved_by,
                "resolved_at": data.resolved_at,
            }
        return {
            "id": data.id,
            "employee_id": data.employee_id,
            "day_date": data.day_date,
            "rule": data.rule,
            "severity": data.severity,
            "minutes_involved": data.minutes_involved,
            "status": data.status,
            "evidence": data.evidence,
            "resolution": resolution,
        }


class DetectionRunRequest(BaseModel):
    start_date: date
    end_date: date
    employee_id: int | None = Field(default=None, ge=1)
    clear_open: bool = False

    @model_validator(mode="after")
    def validate_range(self) -> "DetectionRunRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        return self


class DetectionRunResponse(BaseModel):
    start_date: date
    end_date: date
    employee_days_evaluated: int
    cleared_open: int
    created: int
    created_by_rule: dict[str, int]


class DiscrepancyResolveRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=255)
    note: str | None = Field(default=None, max_length=2000)


class RuleSummaryRead(BaseModel):
    rule: DiscrepancyRule
    count: int
    severity: DiscrepancySeverity
    title: str
    description: str
    affected_employee_ids: list[int]

    model_config = ConfigDict(from_attributes=True)


class DiscrepancyStatsRead(BaseModel):
    total_discrepancies: int
    open_discrepancies: int
    resolved_discrepancies: int
    by_rule: dict[str, int]
    by_severity: dict[str, int]
