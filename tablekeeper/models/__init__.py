"""Database models for TableKeeper."""

from tablekeeper.models.base import Base, async_session_factory, engine
from tablekeeper.models.domain import (
    JobRun,
    Match,
    SeasonTeam,
    StandingsRow,
    TableSnapshot,
    Team,
)

__all__ = [
    # Base
    "Base",
    "engine",
    "async_session_factory",
    # Domain models
    "Team",
    "SeasonTeam",
    "Match",
    "StandingsRow",
    "TableSnapshot",
    "JobRun",
]
