from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine, Inspector

from punch_audit.models import AttendanceStatus, DiscrepancyRule, DiscrepancySeverity, DiscrepancyStatus

logger = logging.getLogger("punch_audit.schema_guard")

EXPECTED_REVISION = "0001_initial"

# Columns the detection and resolution paths read; other columns may lag behind.
REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"id", "full_name", "employee_code"},
    "attendance_records": {"id", "employee_name", "day_date", "in_out_periods", "unpaired_ins", "unpaired_outs"},
    "time_entries": {"id", "external_id", "logged_at", "duration_ms"},
    "discrepancies": {"id", "rule", "severity", "status", "evidence", "resolved_reason"},
    "alembic_version": {"version_num"},
}

_ENUM_TYPES = {
    "attendance_status": AttendanceStatus,
    "discrepancy_rule": DiscrepancyRule,
    "discrepancy_severity": DiscrepancySeverity,
    "discrepancy_status": DiscrepancyStatus,
}
REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    name: {member.value for member in enum_type} for name, enum_type in _ENUM_TYPES.items()
}


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


def _check_columns(inspector: Inspector, issues: list[str]) -> None:
    for table_name, required in REQUIRED_TABLE_COLUMNS.items():
        try:
            present = {str(column.get("name")) for column in inspector.get_columns(table_name)}
        except Exception as exc:
            logger.warning("schema_guard_table_unreadable", extra={"table": table_name, "error": repr(exc)})
            issues.append(f"TABLE_UNREADABLE:{table_name}:{type(exc).__name__}")
            continue

        missing = sorted(required - present)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")


def _installed_enum_labels(inspector: Inspector, warnings: list[str]) -> dict[str, set[str]]:
    try:
        enums = inspector.get_enums() or []
    except Exception as exc:
        warnings.append(f"ENUM_INSPECTION_FAILED:{type(exc).__name__}")
        return {}

    labels_by_name: dict[str, set[str]] = {}
    for item in enums:
        name = str(item.get("name") or "").strip()
        labels = item.get("labels")
        if name and isinstance(labels, list):
            labels_by_name[name] = {str(label) for label in labels}
    return labels_by_name


def _check_enums(inspector: Inspector, issues: list[str], warnings: list[str]) -> None:
    installed = _installed_enum_labels(inspector, warnings)
    for enum_name, required in REQUIRED_ENUM_VALUES.items():
        labels = installed.get(enum_name)
        if labels is None:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing = sorted(required - labels)
        if missing:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing)}")


def _check_alembic_version(engine: Engine, issues: list[str], warnings: list[str]) -> None:
    try:
        with engine.connect() as connection:
            value = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except Exception as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{type(exc).__name__}")
        return

    version = str(value).strip() if value is not None else ""
    if not version:
        issues.append("ALEMBIC_VERSION_EMPTY")
    elif version != EXPECTED_REVISION:
        warnings.append(f"ALEMBIC_VERSION_UNEXPECTED:{version}")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    """Compare the live database with what the models expect.

    Missing columns, enum labels and an empty revision are issues; an unknown
    enum type or an unexpected revision is only a warning.
    """
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)

    inspector = inspect(engine)
    _check_columns(inspector, issues)
    _check_enums(inspector, issues, warnings)
    _check_alembic_version(engine, issues, warnings)

    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
