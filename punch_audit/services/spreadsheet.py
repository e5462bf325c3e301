from __future__ import annotations

from io import BytesIO
from typing import Any

from openpyxl import load_workbook

from punch_audit.errors import ApiError
from punch_audit.services.punches import RawPunch

_HEADER_ALIASES = {
    "name": "name",
    "employee name": "name",
    "empcode": "employee_code",
    "employee code": "employee_code",
    "punchdate": "timestamp",
    "punch date": "timestamp",
    "timestamp": "timestamp",
    "mcid": "direction_code",
    "direction": "direction_code",
    "in/out": "direction_code",
}
_REQUIRED_COLUMNS = {"name", "timestamp", "direction_code"}
_HEADER_SCAN_ROWS = 20


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _locate_header(rows: list[tuple[Any, ...]]) -> tuple[int, dict[str, int]]:
    for row_idx, row in enumerate(rows[:_HEADER_SCAN_ROWS]):
        columns: dict[str, int] = {}
        for col_idx, value in enumerate(row):
            key = _HEADER_ALIASES.get(_cell_text(value).lower())
            if key is not None and key not in columns:
                columns[key] = col_idx
        if _REQUIRED_COLUMNS.issubset(columns):
            return row_idx, columns
    raise ApiError(
        status_code=422,
        code="PUNCH_SHEET_HEADER_NOT_FOUND",
        message="Sheet needs Name, PunchDate and Direction (or mcid) columns.",
    )


def read_punch_workbook(content: bytes) -> list[RawPunch]:
    """Read the first sheet of a punch log into RawPunch rows.

    Cell values are passed through untouched; malformed ones are dropped later
    by normalization like any other source.
    """
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise ApiError(
            status_code=422,
            code="PUNCH_SHEET_UNREADABLE",
            message="Uploaded file is not a readable .xlsx workbook.",
        ) from exc

    try:
        ws = workbook.worksheets[0]
        rows = [tuple(row) for row in ws.iter_rows(values_only=True)]
    finally:
        workbook.close()

    header_idx, columns = _locate_header(rows)

    def _value(row: tuple[Any, ...], key: str) -> Any:
        idx = columns.get(key)
        if idx is None or idx >= len(row):
            return None
        return row[idx]

    punches: list[RawPunch] = []
    for row in rows[header_idx + 1 :]:
        if not any(_cell_text(value) for value in row):
            continue
        employee_code = _cell_text(_value(row, "employee_code")) or None
        punches.append(
            RawPunch(
                name=_cell_text(_value(row, "name")),
                employee_code=employee_code,
                timestamp=_value(row, "timestamp"),
                direction_code=_value(row, "direction_code"),
            )
        )
    return punches
