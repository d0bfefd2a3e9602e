"""Standings calculation module for TableKeeper."""

from tablekeeper.services.standings.calculator import compute, find_violations, verify_table
from tablekeeper.services.standings.table import (
    MatchResult,
    MatchStatus,
    Snapshot,
    Table,
    TableEntry,
    entries_checksum,
)

__all__ = [
    "compute",
    "find_violations",
    "verify_table",
    "MatchResult",
    "MatchStatus",
    "Snapshot",
    "Table",
    "TableEntry",
    "entries_checksum",
]
