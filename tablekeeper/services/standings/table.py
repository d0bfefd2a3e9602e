"""Value types for league tables.

These are plain frozen dataclasses so tables can be compared field by field,
hashed, and serialised to a canonical JSON form for checksums.
"""

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Hashable

TeamId = Hashable


class MatchStatus(str, Enum):
    """Lifecycle status of a match."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


@dataclass(frozen=True)
class MatchResult:
    """A single match as seen by the calculator."""

    league_id: int
    season_id: int
    home_team_id: TeamId
    away_team_id: TeamId
    home_goals: int | None
    away_goals: int | None
    status: MatchStatus = MatchStatus.FINISHED
    matchday: int | None = None
    match_id: int | None = None


@dataclass(frozen=True)
class TableEntry:
    """One row of a league table."""

    team_id: TeamId
    position: int
    played: int
    won: int
    drawn: int
    lost: int
    goals_for: int
    goals_against: int
    goal_difference: int
    points: int
    team_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TableEntry":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class Table:
    """Ordered standings for one league and season."""

    league_id: int | None
    season_id: int | None
    entries: tuple[TableEntry, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def entry_for(self, team_id: TeamId) -> TableEntry | None:
        for entry in self.entries:
            if entry.team_id == team_id:
                return entry
        return None

    def entries_as_dicts(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries]

    def to_dict(self) -> dict[str, Any]:
        return {
            "league_id": self.league_id,
            "season_id": self.season_id,
            "entries": self.entries_as_dicts(),
        }

    def to_json(self) -> str:
        """Canonical JSON form. Identical tables give identical bytes."""
        return canonical_json(self.to_dict())

    @classmethod
    def from_entries(
        cls,
        league_id: int | None,
        season_id: int | None,
        entries: list[dict[str, Any]] | list[TableEntry],
    ) -> "Table":
        """Build a table from stored rows, ordered by position."""
        rows = [
            e if isinstance(e, TableEntry) else TableEntry.from_dict(e)
            for e in entries
        ]
        rows.sort(key=lambda e: e.position)
        return cls(league_id=league_id, season_id=season_id, entries=tuple(rows))


def canonical_json(data: Any) -> str:
    """Serialise with sorted keys and fixed separators."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class Snapshot:
    """Immutable saved copy of a table, referenced by id for rollback."""

    id: str
    league_id: int
    season_id: int
    table: Table
    description: str
    created_at: datetime
    checksum: str
    created_by: str | None = None

    @property
    def entry_count(self) -> int:
        return len(self.table)

    def to_dict(self, include_entries: bool = False) -> dict[str, Any]:
        data = {
            "id": self.id,
            "leagueId": self.league_id,
            "seasonId": self.season_id,
            "description": self.description,
            "createdAt": self.created_at,
            "createdBy": self.created_by,
            "entryCount": self.entry_count,
            "checksum": self.checksum,
        }
        if include_entries:
            data["entries"] = self.table.entries_as_dicts()
        return data


def entries_checksum(table: Table) -> str:
    """SHA-256 over the canonical JSON of the table entries."""
    payload = canonical_json(table.entries_as_dicts()).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()
