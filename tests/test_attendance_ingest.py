from __future__ import annotations

import unittest
from datetime import date, datetime
from zoneinfo import ZoneInfo

from punch_audit.models import AttendanceRecord, AttendanceStatus, SyncBatch, SyncBatchSource
from punch_audit.services.attendance import (
    attendance_day_from_record,
    ingest_punches,
    pick_attendance_for_day,
)
from punch_audit.services.identity import RosterEntry, SubstringRosterResolver
from punch_audit.services.punches import RawPunch
from punch_audit.settings import AttendanceRules, parse_shift_windows

KOLKATA = ZoneInfo("Asia/Kolkata")


class _FakeIngestDB:
    def __init__(self) -> None:
        self.added: list[object] = []
        self.executed: list[str] = []
        self.statements: list[object] = []
        self.commit_count = 0

    def add(self, obj: object) -> None:
        if isinstance(obj, SyncBatch):
            obj.id = 41
        self.added.append(obj)

    def add_all(self, objs) -> None:  # type: ignore[no-untyped-def]
        self.added.extend(objs)

    def flush(self) -> None:
        return

    def execute(self, statement):  # type: ignore[no-untyped-def]
        self.executed.append(str(statement))
        self.statements.append(statement)
        return None

    def commit(self) -> None:
        self.commit_count += 1


def _raw(name: str, ts: str, mcid: str) -> RawPunch:
    return RawPunch(name=name, employee_code=None, timestamp=ts, direction_code=mcid)


class IngestPunchesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.resolver = SubstringRosterResolver([RosterEntry(id=1, canonical_name="Ravi Kumar")])
        self.rules = AttendanceRules(
            min_presence_hours=6.0,
            shift_windows=parse_shift_windows("GENERAL=10:00-20:00"),
            timezone=KOLKATA,
        )

    def test_batch_replaces_covered_days_in_one_commit(self) -> None:
        fake_db = _FakeIngestDB()
        raw = [
            _raw("Ravi Kumar", "04/03/2024 08:58:00", "1"),
            _raw("Ravi Kumar", "04/03/2024 13:00:00", "2"),
            _raw("Ravi Kumar", "04/03/2024 14:00:00", "1"),
            _raw("Ravi Kumar", "04/03/2024 18:30:00", "2"),
            _raw("Ravi Kumar", "garbage", "1"),
            _raw("Guest", "04/03/2024 12:00:00", "1"),
        ]

        batch, normalized = ingest_punches(
            fake_db,  # type: ignore[arg-type]
            raw,
            source=SyncBatchSource.SYNC,
            created_by="manager-1",
            rules=self.rules,
            resolver=self.resolver,
        )

        self.assertEqual(batch.punches_received, 6)
        self.assertEqual(batch.punches_dropped, 1)
        self.assertEqual(batch.records_written, 2)
        self.assertEqual(batch.unmatched_names, ["Guest"])
        self.assertEqual(normalized.dropped_count, 1)
        self.assertEqual(fake_db.commit_count, 1)
        self.assertEqual(len(fake_db.executed), 1)
        self.assertIn("DELETE FROM attendance_records", fake_db.executed[0])

        records = [obj for obj in fake_db.added if isinstance(obj, AttendanceRecord)]
        ravi = next(item for item in records if item.employee_id == 1)
        self.assertEqual(ravi.status, AttendanceStatus.PRESENT)
        self.assertAlmostEqual(ravi.total_hours, 8.533, places=2)
        self.assertEqual(ravi.shift, "GENERAL")
        self.assertEqual(len(ravi.in_out_periods), 2)
        self.assertEqual(ravi.batch_id, 41)
        guest = next(item for item in records if item.employee_id is None)
        self.assertEqual(guest.status, AttendanceStatus.PARTIAL)
        self.assertEqual(len(guest.unpaired_ins), 1)

    def test_days_outside_the_requested_range_are_not_written(self) -> None:
        fake_db = _FakeIngestDB()
        raw = [
            _raw("Ravi Kumar", "03/03/2024 09:00:00", "1"),
            _raw("Ravi Kumar", "04/03/2024 09:00:00", "1"),
        ]

        batch, normalized = ingest_punches(
            fake_db,  # type: ignore[arg-type]
            raw,
            source=SyncBatchSource.UPLOAD,
            created_by="manager-1",
            range_start=date(2024, 3, 4),
            range_end=date(2024, 3, 4),
            rules=self.rules,
            resolver=self.resolver,
        )

        records = [obj for obj in fake_db.added if isinstance(obj, AttendanceRecord)]
        self.assertEqual([item.day_date for item in records], [date(2024, 3, 4)])
        self.assertEqual(batch.records_written, 1)
        self.assertEqual(batch.punches_dropped, 1)
        self.assertEqual(dict(normalized.dropped), {"OUT_OF_RANGE": 1})
        self.assertEqual(
            list(fake_db.statements[0].compile().params.values()),
            [date(2024, 3, 4), date(2024, 3, 4)],
        )

    def test_day_stored_under_raw_name_is_cleared_once_the_name_resolves(self) -> None:
        first_db = _FakeIngestDB()
        ingest_punches(
            first_db,  # type: ignore[arg-type]
            [_raw("Ravi", "04/03/2024 09:00:00", "1")],
            source=SyncBatchSource.SYNC,
            created_by="system",
            rules=self.rules,
            resolver=SubstringRosterResolver([]),
        )
        second_db = _FakeIngestDB()

        ingest_punches(
            second_db,  # type: ignore[arg-type]
            [_raw("Ravi", "04/03/2024 09:00:00", "1")],
            source=SyncBatchSource.SYNC,
            created_by="system",
            rules=self.rules,
            resolver=self.resolver,
        )

        first_record = next(obj for obj in first_db.added if isinstance(obj, AttendanceRecord))
        second_record = next(obj for obj in second_db.added if isinstance(obj, AttendanceRecord))
        self.assertEqual((first_record.employee_name, first_record.employee_id), ("Ravi", None))
        self.assertEqual((second_record.employee_name, second_record.employee_id), ("Ravi Kumar", 1))
        for fake_db in (first_db, second_db):
            self.assertNotIn("employee_name", fake_db.executed[0])
            self.assertEqual(list(fake_db.statements[0].compile().params.values()), [[date(2024, 3, 4)]])

    def test_empty_batch_skips_the_delete(self) -> None:
        fake_db = _FakeIngestDB()

        batch, _ = ingest_punches(
            fake_db,  # type: ignore[arg-type]
            [],
            source=SyncBatchSource.SYNC,
            created_by="system",
            rules=self.rules,
            resolver=self.resolver,
        )

        self.assertEqual(batch.records_written, 0)
        self.assertEqual(fake_db.executed, [])
        self.assertEqual(fake_db.commit_count, 1)


class StoredRecordTests(unittest.TestCase):
    def test_stored_periods_round_trip_into_attendance_day(self) -> None:
        record = AttendanceRecord(
            id=3,
            employee_name="Ravi Kumar",
            day_date=date(2024, 3, 4),
            in_out_periods=[{"in": "2024-03-04T09:00:00+05:30", "out": "2024-03-04T13:00:00+05:30"}],
            unpaired_ins=["2024-03-04T14:00:00+05:30"],
            unpaired_outs=[],
            last_out=datetime(2024, 3, 4, 13, 0, tzinfo=KOLKATA),
            total_hours=4.0,
            status=AttendanceStatus.PARTIAL,
        )

        day = attendance_day_from_record(record)

        self.assertEqual(day.status, AttendanceStatus.PARTIAL)
        self.assertEqual(len(day.periods), 1)
        self.assertEqual(day.periods[0].duration_hours, 4.0)
        self.assertEqual(day.unpaired_ins[0].hour, 14)

    def test_record_with_most_presence_is_used(self) -> None:
        short = AttendanceRecord(id=1, total_hours=1.0)
        full = AttendanceRecord(id=2, total_hours=8.0)

        self.assertIs(pick_attendance_for_day([short, full]), full)
        self.assertIsNone(pick_attendance_for_day([]))


if __name__ == "__main__":
    unittest.main()
