from __future__ import annotations

import unittest
from unittest.mock import patch

from punch_audit.services.schema_guard import verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


_FULL_ENUMS = [
    {"name": "attendance_status", "labels": ["PRESENT", "ABSENT", "PARTIAL"]},
    {"name": "discrepancy_rule", "labels": ["LOG_AFTER_EXIT", "NO_ATTENDANCE", "OUTSIDE_HOURS", "ZERO_PRESENCE"]},
    {"name": "discrepancy_severity", "labels": ["low", "medium", "high"]},
    {"name": "discrepancy_status", "labels": ["open", "resolved"]},
]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_tables_and_enums_match(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={
                "employees": {"id", "full_name", "employee_code", "email"},
                "attendance_records": {
                    "id",
                    "employee_name",
                    "day_date",
                    "in_out_periods",
                    "unpaired_ins",
                    "unpaired_outs",
                },
                "time_entries": {"id", "external_id", "logged_at", "duration_ms"},
                "discrepancies": {"id", "rule", "severity", "status", "evidence", "resolved_reason"},
                "alembic_version": {"version_num"},
            },
            enums=_FULL_ENUMS,
        )
        fake_engine = _FakeEngine("0001_initial")

        with patch("punch_audit.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_columns_and_enum_values(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={
                "employees": {"id", "full_name"},
                "attendance_records": {"id", "employee_name", "day_date", "in_out_periods"},
                "time_entries": {"id", "external_id", "logged_at", "duration_ms"},
                "discrepancies": {"id", "rule", "severity", "status", "evidence"},
                "alembic_version": {"version_num"},
            },
            enums=[
                {"name": "attendance_status", "labels": ["PRESENT", "ABSENT", "PARTIAL"]},
                {"name": "discrepancy_rule", "labels": ["LOG_AFTER_EXIT", "NO_ATTENDANCE"]},
                {"name": "discrepancy_severity", "labels": ["low", "medium", "high"]},
            ],
        )
        fake_engine = _FakeEngine("")

        with patch("punch_audit.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:employees:employee_code", result.issues)
        self.assertIn("MISSING_COLUMNS:attendance_records:unpaired_ins,unpaired_outs", result.issues)
        self.assertIn("MISSING_COLUMNS:discrepancies:resolved_reason", result.issues)
        self.assertIn("MISSING_ENUM_VALUES:discrepancy_rule:OUTSIDE_HOURS,ZERO_PRESENCE", result.issues)
        self.assertIn("ENUM_NOT_FOUND:discrepancy_status", result.warnings)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)
        self.assertEqual(result.to_dict()["issue_count"], len(result.issues))

    def test_unexpected_revision_is_a_warning_only(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={
                "employees": {"id", "full_name", "employee_code"},
                "attendance_records": {
                    "id",
                    "employee_name",
                    "day_date",
                    "in_out_periods",
                    "unpaired_ins",
                    "unpaired_outs",
                },
                "time_entries": {"id", "external_id", "logged_at", "duration_ms"},
                "discrepancies": {"id", "rule", "severity", "status", "evidence", "resolved_reason"},
                "alembic_version": {"version_num"},
            },
            enums=_FULL_ENUMS,
        )

        with patch("punch_audit.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0002_future"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.warnings, ["ALEMBIC_VERSION_UNEXPECTED:0002_future"])


if __name__ == "__main__":
    unittest.main()
