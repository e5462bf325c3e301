from __future__ import annotations

import unittest
from collections import Counter
from collections.abc import Generator
from datetime import date, datetime, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient

from punch_audit.db import get_db
from punch_audit.main import app
from punch_audit.models import (
    AuditLog,
    Discrepancy,
    DiscrepancyRule,
    DiscrepancySeverity,
    DiscrepancyStatus,
    SyncBatch,
    SyncBatchSource,
)
from punch_audit.services.discrepancies import DetectionRunResult
from punch_audit.services.punches import NormalizationResult
from punch_audit.settings import AttendanceRules


def _override_get_db(fake_db):
    def _override() -> Generator[object, None, None]:
        yield fake_db

    return _override


class _FakeDiscrepancyDB:
    def __init__(self, rows: list[Discrepancy] | None = None):
        self.rows = {row.id: row for row in rows or []}
        self.added: list[object] = []

    def get(self, model, pk):  # type: ignore[no-untyped-def]
        if model is Discrepancy:
            return self.rows.get(pk)
        return None

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def commit(self) -> None:
        return

    def rollback(self) -> None:
        return

    def refresh(self, _obj: object) -> None:
        return


def _log_after_exit(discrepancy_id: int = 5, *, employee_id: int = 7) -> Discrepancy:
    return Discrepancy(
        id=discrepancy_id,
        employee_id=employee_id,
        day_date=date(2024, 3, 4),
        rule=DiscrepancyRule.LOG_AFTER_EXIT,
        severity=DiscrepancySeverity.HIGH,
        minutes_involved=25,
        status=DiscrepancyStatus.OPEN,
        evidence={
            "rule": "LOG_AFTER_EXIT",
            "task_id": "T-42",
            "entry_id": 9,
            "logged_at": "2024-03-04T13:20:00+05:30",
            "out_period": {"start": "2024-03-04T13:00:00+05:30", "end": "2024-03-04T14:00:00+05:30"},
        },
    )


class DiscrepancyEndpointTests(unittest.TestCase):
    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_list_returns_typed_evidence(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDiscrepancyDB())
        client = TestClient(app)

        with patch("punch_audit.routers.discrepancies.list_discrepancies", return_value=[_log_after_exit()]):
            response = client.get("/api/discrepancies", params={"start_date": "2024-03-01", "end_date": "2024-03-31"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(len(body), 1)
        self.assertEqual(body[0]["rule"], "LOG_AFTER_EXIT")
        self.assertEqual(body[0]["severity"], "high")
        self.assertEqual(body[0]["evidence"]["task_id"], "T-42")
        self.assertIsNone(body[0]["resolution"])

    def test_list_rejects_inverted_range(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDiscrepancyDB())
        client = TestClient(app)

        response = client.get("/api/discrepancies", params={"start_date": "2024-03-31", "end_date": "2024-03-01"})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "INVALID_RANGE")

    def test_manager_resolution_records_actor_and_audit(self) -> None:
        fake_db = _FakeDiscrepancyDB([_log_after_exit()])
        app.dependency_overrides[get_db] = _override_get_db(fake_db)
        client = TestClient(app)

        response = client.post(
            "/api/discrepancies/5/resolve",
            json={"reason": "APPROVED_OFFSITE", "note": "Client visit"},
            headers={"X-Actor-Id": "manager-1"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "resolved")
        self.assertEqual(body["resolution"]["reason"], "APPROVED_OFFSITE")
        self.assertEqual(body["resolution"]["note"], "Client visit")
        self.assertEqual(body["resolution"]["resolved_by"], "manager-1")
        audits = [item for item in fake_db.added if isinstance(item, AuditLog)]
        self.assertEqual(len(audits), 1)
        self.assertEqual(audits[0].action, "DISCREPANCY_RESOLVED")

    def test_resolving_twice_returns_conflict(self) -> None:
        fake_db = _FakeDiscrepancyDB([_log_after_exit()])
        app.dependency_overrides[get_db] = _override_get_db(fake_db)
        client = TestClient(app)

        first = client.post("/api/discrepancies/5/resolve", json={"reason": "OK"})
        second = client.post("/api/discrepancies/5/resolve", json={"reason": "OK"})

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["error"]["code"], "DISCREPANCY_ALREADY_RESOLVED")

    def test_unknown_discrepancy_returns_not_found(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDiscrepancyDB())
        client = TestClient(app)

        response = client.post("/api/discrepancies/404/resolve", json={"reason": "OK"})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "DISCREPANCY_NOT_FOUND")

    def test_missing_reason_is_a_validation_error(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDiscrepancyDB([_log_after_exit()]))
        client = TestClient(app)

        response = client.post("/api/discrepancies/5/resolve", json={"reason": ""})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_member_resolves_own_discrepancy(self) -> None:
        fake_db = _FakeDiscrepancyDB([_log_after_exit(employee_id=7)])
        app.dependency_overrides[get_db] = _override_get_db(fake_db)
        client = TestClient(app)

        response = client.post(
            "/api/member/discrepancies/5/resolve",
            json={"reason": "FORGOT_TO_PUNCH"},
            headers={"X-Employee-Id": "7"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["resolution"]["resolved_by"], "self:7")

    def test_member_cannot_resolve_someone_elses_discrepancy(self) -> None:
        fake_db = _FakeDiscrepancyDB([_log_after_exit(employee_id=7)])
        app.dependency_overrides[get_db] = _override_get_db(fake_db)
        client = TestClient(app)

        response = client.post(
            "/api/member/discrepancies/5/resolve",
            json={"reason": "FORGOT_TO_PUNCH"},
            headers={"X-Employee-Id": "8"},
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "DISCREPANCY_FORBIDDEN")
        self.assertEqual(fake_db.rows[5].status, DiscrepancyStatus.OPEN)

    def test_member_routes_require_employee_header(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDiscrepancyDB())
        client = TestClient(app)

        response = client.get("/api/member/discrepancies")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "MEMBER_IDENTITY_REQUIRED")

    def test_detection_run_reports_counts(self) -> None:
        fake_db = _FakeDiscrepancyDB()
        app.dependency_overrides[get_db] = _override_get_db(fake_db)
        client = TestClient(app)
        run = DetectionRunResult(
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 31),
            employee_days_evaluated=4,
            cleared_open=2,
            created=[_log_after_exit()],
        )

        with patch("punch_audit.routers.discrepancies.run_detection", return_value=run) as run_mock:
            response = client.post(
                "/api/discrepancies/detect",
                json={"start_date": "2024-03-01", "end_date": "2024-03-31", "clear_open": True},
            )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["created"], 1)
        self.assertEqual(body["cleared_open"], 2)
        self.assertEqual(body["created_by_rule"], {"LOG_AFTER_EXIT": 1})
        self.assertTrue(run_mock.call_args.kwargs["clear_open"])
        self.assertEqual(len([item for item in fake_db.added if isinstance(item, AuditLog)]), 1)

    def test_detection_uses_rules_validated_at_startup(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDiscrepancyDB())
        startup_rules = AttendanceRules(min_presence_hours=7.5)
        app.state.attendance_rules = startup_rules
        self.addCleanup(delattr, app.state, "attendance_rules")
        client = TestClient(app)
        run = DetectionRunResult(
            start_date=date(2024, 3, 1),
            end_date=date(2024, 3, 1),
            employee_days_evaluated=0,
            cleared_open=0,
            created=[],
        )

        with patch("punch_audit.routers.discrepancies.run_detection", return_value=run) as run_mock:
            response = client.post("/api/discrepancies/detect", json={"start_date": "2024-03-01", "end_date": "2024-03-01"})

        self.assertEqual(response.status_code, 200)
        self.assertIs(run_mock.call_args.kwargs["rules"], startup_rules)

    def test_stats_and_summary(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDiscrepancyDB())
        client = TestClient(app)
        params = {"start_date": "2024-03-01", "end_date": "2024-03-31"}

        with patch("punch_audit.routers.discrepancies.list_discrepancies", return_value=[_log_after_exit()]):
            stats = client.get("/api/discrepancies/stats", params=params)
            summary = client.get("/api/discrepancies/summary", params=params)

        self.assertEqual(stats.status_code, 200)
        self.assertEqual(stats.json()["by_rule"]["LOG_AFTER_EXIT"], 1)
        self.assertEqual(stats.json()["open_discrepancies"], 1)
        self.assertEqual(summary.status_code, 200)
        self.assertEqual(summary.json()[0]["affected_employee_ids"], [7])
        self.assertEqual(summary.json()[0]["title"], "Logged During OUT Periods")


class AttendanceEndpointTests(unittest.TestCase):
    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_sync_returns_batch_summary(self) -> None:
        fake_db = _FakeDiscrepancyDB()
        app.dependency_overrides[get_db] = _override_get_db(fake_db)
        client = TestClient(app)
        batch = SyncBatch(
            id=3,
            source=SyncBatchSource.SYNC,
            range_start=None,
            range_end=None,
            punches_received=2,
            punches_dropped=1,
            records_written=1,
            unmatched_names=[],
            created_at=datetime(2024, 3, 5, tzinfo=timezone.utc),
        )
        normalized = NormalizationResult(days=[], received=2, dropped=Counter({"UNKNOWN_DIRECTION": 1}))

        with patch("punch_audit.routers.attendance.ingest_punches", return_value=(batch, normalized)) as ingest_mock:
            response = client.post(
                "/api/attendance/sync",
                json={
                    "punches": [
                        {"Name": "Ravi Kumar", "Empcode": "E100", "PunchDate": "04/03/2024 08:58:00", "mcid": "1"},
                        {"Name": "Ravi Kumar", "PunchDate": "04/03/2024 18:30:00", "mcid": "7"},
                    ]
                },
                headers={"X-Actor-Id": "manager-1"},
            )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["batch"]["id"], 3)
        self.assertEqual(body["batch"]["punches_dropped"], 1)
        self.assertEqual(body["dropped_by_reason"], {"UNKNOWN_DIRECTION": 1})
        raw = ingest_mock.call_args.args[1]
        self.assertEqual(raw[0].direction_code, "1")
        self.assertEqual(raw[0].employee_code, "E100")
        self.assertEqual(ingest_mock.call_args.kwargs["created_by"], "manager-1")
        audits = [item for item in fake_db.added if isinstance(item, AuditLog)]
        self.assertEqual([item.action for item in audits], ["PUNCH_BATCH_SYNC"])
        self.assertEqual((audits[0].entity_type, audits[0].entity_id), ("sync_batch", "3"))
        self.assertEqual(audits[0].details["records_written"], 1)

    def test_empty_upload_is_rejected(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDiscrepancyDB())
        client = TestClient(app)

        response = client.post(
            "/api/attendance/upload",
            files={"file": ("punches.xlsx", b"", "application/octet-stream")},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "EMPTY_UPLOAD")

    def test_records_reject_inverted_range(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDiscrepancyDB())
        client = TestClient(app)

        response = client.get("/api/attendance/records", params={"start_date": "2024-03-31", "end_date": "2024-03-01"})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "INVALID_RANGE")


if __name__ == "__main__":
    unittest.main()
