#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
import sys
from datetime import date, datetime, timezone

from punch_audit.db import SessionLocal
from punch_audit.errors import ConfigurationError
from punch_audit.logging_utils import setup_json_logging
from punch_audit.services.discrepancies import run_detection
from punch_audit.settings import get_attendance_rules, get_settings


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r} (expected YYYY-MM-DD)") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run discrepancy detection for a date range.")
    parser.add_argument("--start", type=_parse_date, required=True, help="First day (YYYY-MM-DD).")
    parser.add_argument("--end", type=_parse_date, required=True, help="Last day (YYYY-MM-DD), inclusive.")
    parser.add_argument("--employee-id", type=int, default=None, help="Restrict the run to one employee.")
    parser.add_argument(
        "--clear-open",
        action="store_true",
        help="Delete open discrepancies in the range before detecting.",
    )
    return parser


def run(args: argparse.Namespace) -> dict:
    if args.end < args.start:
        raise ValueError("--end must not be before --start")

    rules = get_attendance_rules()
    with SessionLocal() as db:
        result = run_detection(
            db,
            start_date=args.start,
            end_date=args.end,
            employee_id=args.employee_id,
            clear_open=args.clear_open,
            rules=rules,
        )
        return {
            "generated_at_utc": datetime.now(timezone.utc).isoformat(),
            "start_date": result.start_date.isoformat(),
            "end_date": result.end_date.isoformat(),
            "employee_id": args.employee_id,
            "employee_days_evaluated": result.employee_days_evaluated,
            "cleared_open": result.cleared_open,
            "created": len(result.created),
            "created_by_rule": result.created_by_rule,
        }


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_json_logging(get_settings().log_level, service="punch-audit-detection")
    try:
        report = run(args)
    except (ConfigurationError, ValueError) as exc:
        print(json.dumps({"ok": False, "error": str(exc)}, ensure_ascii=True), file=sys.stderr)
        return 2
    print(json.dumps({"ok": True, **report}, indent=2, ensure_ascii=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
