"""Domain models for TableKeeper.

Leagues, seasons, clubs and matches are authored by the content backend;
this service only reads matches and rosters and owns the published table,
its snapshots, and the task audit log.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tablekeeper.models.base import Base, TimestampMixin

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Team(Base, TimestampMixin):
    """
    Participant in a league.

    Whether a team is a club's first team or a reserve side is the content
    backend's concern; here it is an opaque id with a display name.
    """

    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    def __repr__(self) -> str:
        return f"<Team {self.name} ({self.id})>"


class SeasonTeam(Base):
    """League roster: which teams play in a league during a season."""

    __tablename__ = "season_teams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    league_id: Mapped[int] = mapped_column(Integer, nullable=False)
    season_id: Mapped[int] = mapped_column(Integer, nullable=False)
    team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("teams.id"), nullable=False
    )

    team: Mapped["Team"] = relationship("Team")

    __table_args__ = (
        UniqueConstraint("league_id", "season_id", "team_id", name="uq_season_team"),
        Index("idx_season_teams_league_season", "league_id", "season_id"),
    )


class Match(Base, TimestampMixin):
    """
    Single league match.

    Only matches with status 'finished' count towards the table. Goals are
    null until the result is entered.
    """

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    league_id: Mapped[int] = mapped_column(Integer, nullable=False)
    season_id: Mapped[int] = mapped_column(Integer, nullable=False)
    matchday: Mapped[int | None] = mapped_column(Integer, nullable=True)
    home_team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("teams.id"), nullable=False
    )
    away_team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("teams.id"), nullable=False
    )
    home_goals: Mapped[int | None] = mapped_column(Integer, nullable=True)
    away_goals: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default="scheduled",
        nullable=False,
        doc="'scheduled', 'in_progress', 'finished', 'cancelled', 'postponed'",
    )
    kickoff_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    home_team: Mapped["Team"] = relationship("Team", foreign_keys=[home_team_id])
    away_team: Mapped["Team"] = relationship("Team", foreign_keys=[away_team_id])

    __table_args__ = (
        Index("idx_matches_league_season_status", "league_id", "season_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Match {self.home_team_id}-{self.away_team_id} "
            f"{self.home_goals}:{self.away_goals} ({self.status})>"
        )


class StandingsRow(Base):
    """
    One published table entry.

    Written only by the recalculation replace step or a snapshot rollback,
    always as a complete set for the league and season.
    """

    __tablename__ = "table_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    league_id: Mapped[int] = mapped_column(Integer, nullable=False)
    season_id: Mapped[int] = mapped_column(Integer, nullable=False)
    team_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("teams.id"), nullable=False
    )
    team_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    played: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    won: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    drawn: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    goals_for: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    goals_against: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    goal_difference: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    calculation_source: Mapped[str | None] = mapped_column(
        String(100), nullable=True, doc="'calculation' or 'snapshot_restore:<id>'"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("league_id", "season_id", "team_id", name="uq_table_entry_team"),
        Index("idx_table_entries_league_season_position", "league_id", "season_id", "position"),
    )

    def __repr__(self) -> str:
        return f"<StandingsRow {self.position}. {self.team_id} pts={self.points}>"


class TableSnapshot(Base):
    """
    Immutable copy of a published table.

    Taken before each recalculation overwrites a table. The checksum covers
    the canonical JSON of the entries and is checked before any rollback.
    """

    __tablename__ = "table_snapshots"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    league_id: Mapped[int] = mapped_column(Integer, nullable=False)
    season_id: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    entries: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        Index("idx_table_snapshots_league_season_created", "league_id", "season_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<TableSnapshot {self.id} league={self.league_id} season={self.season_id}>"


class JobRun(Base):
    """
    Task execution audit log.

    Every maintenance task run is logged here for:
    1. Monitoring and alerting
    2. Debugging failures
    3. Performance tracking
    """

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, doc="'running', 'success', 'failed'"
    )
    records_processed: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )

    def __repr__(self) -> str:
        return f"<JobRun {self.job_name} status={self.status}>"
