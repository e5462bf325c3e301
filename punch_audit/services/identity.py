"""Roster identity resolution for punch names.

Punch sources only carry a display name (and sometimes a device-side employee
code), so each punch has to be linked back to a roster entry. The default
resolver keeps the historical bidirectional substring heuristic; callers that
maintain an explicit mapping table can swap in ``MappingTableResolver`` without
touching pairing or detection.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class RosterEntry:
    id: int
    canonical_name: str
    employee_code: str | None = None


class IdentityResolver(Protocol):
    def resolve(self, name: str, employee_code: str | None = None) -> RosterEntry | None: ...


def normalize_name(value: str | None) -> str:
    return " ".join((value or "").split()).lower()


class SubstringRosterResolver:
    """Case-insensitive containment match in both directions.

    When several roster names match, the one sharing the longest matched text
    wins; ties keep roster order. The longest-match tie-break is an assumption
    pending confirmation against real roster data.
    """

    def __init__(self, roster: list[RosterEntry]) -> None:
        self._roster = [(entry, normalize_name(entry.canonical_name)) for entry in roster]

    def resolve(self, name: str, employee_code: str | None = None) -> RosterEntry | None:
        punch_name = normalize_name(name)
        if not punch_name:
            return None

        best_entry: RosterEntry | None = None
        best_length = 0
        for entry, roster_name in self._roster:
            if not roster_name:
                continue
            if roster_name in punch_name or punch_name in roster_name:
                match_length = min(len(roster_name), len(punch_name))
                if match_length > best_length:
                    best_entry = entry
                    best_length = match_length
        return best_entry


class MappingTableResolver:
    """Explicit code/name mapping; no fuzzy matching at all."""

    def __init__(
        self,
        roster: list[RosterEntry],
        *,
        name_aliases: dict[str, int] | None = None,
    ) -> None:
        self._by_id = {entry.id: entry for entry in roster}
        self._by_code = {
            entry.employee_code.strip(): entry
            for entry in roster
            if entry.employee_code and entry.employee_code.strip()
        }
        self._by_name: dict[str, RosterEntry] = {}
        for entry in roster:
            self._by_name.setdefault(normalize_name(entry.canonical_name), entry)
        for alias, employee_id in (name_aliases or {}).items():
            entry = self._by_id.get(employee_id)
            if entry is not None:
                self._by_name[normalize_name(alias)] = entry

    def resolve(self, name: str, employee_code: str | None = None) -> RosterEntry | None:
        if employee_code and employee_code.strip() in self._by_code:
            return self._by_code[employee_code.strip()]
        return self._by_name.get(normalize_name(name))
