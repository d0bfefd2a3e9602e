"""Repository interfaces and SQLAlchemy implementations.

The recalculation core only talks to these interfaces, so the match data,
the published table, and the snapshot archive can be backed by anything
that honours the contracts (tests use in-memory fakes).
"""

from collections.abc import Iterable
from datetime import timezone
from typing import Protocol

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tablekeeper.models.domain import Match, SeasonTeam, StandingsRow, TableSnapshot, Team
from tablekeeper.services.standings.table import (
    MatchResult,
    MatchStatus,
    Snapshot,
    Table,
    TableEntry,
    TeamId,
)

logger = structlog.get_logger(__name__)


class MatchStore(Protocol):
    """Read access to match results and league rosters."""

    async def list_finished_matches(self, league_id: int, season_id: int) -> list[MatchResult]:
        ...

    async def list_teams(self, league_id: int, season_id: int) -> list[tuple[TeamId, str | None]]:
        ...


class TableStore(Protocol):
    """The published table. ``replace_table`` must be all-or-nothing."""

    async def get_current_table(self, league_id: int, season_id: int) -> Table | None:
        ...

    async def replace_table(
        self,
        league_id: int,
        season_id: int,
        table: Table,
        source: str = "calculation",
    ) -> None:
        ...


class SnapshotRepository(Protocol):
    """Write-once archive of table snapshots."""

    async def add(self, snapshot: Snapshot) -> None:
        ...

    async def get(self, snapshot_id: str) -> Snapshot | None:
        ...

    async def find(
        self, league_id: int | None = None, season_id: int | None = None
    ) -> list[Snapshot]:
        ...

    async def delete_many(self, snapshot_ids: Iterable[str]) -> int:
        ...


class SqlMatchStore:
    """Match store reading the content backend's tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def list_finished_matches(self, league_id: int, season_id: int) -> list[MatchResult]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Match)
                .where(
                    Match.league_id == league_id,
                    Match.season_id == season_id,
                    Match.status == MatchStatus.FINISHED.value,
                )
                .order_by(Match.matchday, Match.id)
            )
            return [
                MatchResult(
                    league_id=m.league_id,
                    season_id=m.season_id,
                    home_team_id=m.home_team_id,
                    away_team_id=m.away_team_id,
                    home_goals=m.home_goals,
                    away_goals=m.away_goals,
                    status=MatchStatus(m.status),
                    matchday=m.matchday,
                    match_id=m.id,
                )
                for m in result.scalars().all()
            ]

    async def list_teams(self, league_id: int, season_id: int) -> list[tuple[TeamId, str | None]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Team.id, Team.name)
                .join(SeasonTeam, SeasonTeam.team_id == Team.id)
                .where(
                    SeasonTeam.league_id == league_id,
                    SeasonTeam.season_id == season_id,
                )
                .order_by(Team.id)
            )
            return [(row.id, row.name) for row in result.all()]


def _row_to_entry(row: StandingsRow) -> TableEntry:
    return TableEntry(
        team_id=row.team_id,
        position=row.position,
        played=row.played,
        won=row.won,
        drawn=row.drawn,
        lost=row.lost,
        goals_for=row.goals_for,
        goals_against=row.goals_against,
        goal_difference=row.goal_difference,
        points=row.points,
        team_name=row.team_name,
    )


class SqlTableStore:
    """Published table in ``table_entries``; replaced inside one transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_current_table(self, league_id: int, season_id: int) -> Table | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(StandingsRow)
                .where(
                    StandingsRow.league_id == league_id,
                    StandingsRow.season_id == season_id,
                )
                .order_by(StandingsRow.position)
            )
            rows = result.scalars().all()
            if not rows:
                return None
            return Table(
                league_id=league_id,
                season_id=season_id,
                entries=tuple(_row_to_entry(r) for r in rows),
            )

    async def replace_table(
        self,
        league_id: int,
        season_id: int,
        table: Table,
        source: str = "calculation",
    ) -> None:
        """Delete and re-insert all rows in a single transaction."""
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    delete(StandingsRow).where(
                        StandingsRow.league_id == league_id,
                        StandingsRow.season_id == season_id,
                    )
                )
                session.add_all(
                    StandingsRow(
                        league_id=league_id,
                        season_id=season_id,
                        team_id=entry.team_id,
                        team_name=entry.team_name,
                        position=entry.position,
                        played=entry.played,
                        won=entry.won,
                        drawn=entry.drawn,
                        lost=entry.lost,
                        goals_for=entry.goals_for,
                        goals_against=entry.goals_against,
                        goal_difference=entry.goal_difference,
                        points=entry.points,
                        calculation_source=source,
                    )
                    for entry in table.entries
                )
        logger.debug(
            "table_replaced",
            league_id=league_id,
            season_id=season_id,
            entries=len(table),
            source=source,
        )


def _record_to_snapshot(record: TableSnapshot) -> Snapshot:
    created_at = record.created_at
    if created_at.tzinfo is None:
        # SQLite drops the offset; values are always written in UTC
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Snapshot(
        id=record.id,
        league_id=record.league_id,
        season_id=record.season_id,
        table=Table.from_entries(record.league_id, record.season_id, record.entries),
        description=record.description,
        created_at=created_at,
        checksum=record.checksum,
        created_by=record.created_by,
    )


class SqlSnapshotRepository:
    """Snapshot archive in ``table_snapshots``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, snapshot: Snapshot) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                session.add(
                    TableSnapshot(
                        id=snapshot.id,
                        league_id=snapshot.league_id,
                        season_id=snapshot.season_id,
                        description=snapshot.description,
                        entries=snapshot.table.entries_as_dicts(),
                        entry_count=snapshot.entry_count,
                        checksum=snapshot.checksum,
                        created_by=snapshot.created_by,
                        created_at=snapshot.created_at,
                    )
                )

    async def get(self, snapshot_id: str) -> Snapshot | None:
        async with self.session_factory() as session:
            record = await session.get(TableSnapshot, snapshot_id)
            return _record_to_snapshot(record) if record else None

    async def find(
        self, league_id: int | None = None, season_id: int | None = None
    ) -> list[Snapshot]:
        query = select(TableSnapshot).order_by(TableSnapshot.created_at.desc())
        if league_id is not None:
            query = query.where(TableSnapshot.league_id == league_id)
        if season_id is not None:
            query = query.where(TableSnapshot.season_id == season_id)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [_record_to_snapshot(r) for r in result.scalars().all()]

    async def delete_many(self, snapshot_ids: Iterable[str]) -> int:
        ids = list(snapshot_ids)
        if not ids:
            return 0
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(TableSnapshot).where(TableSnapshot.id.in_(ids))
                )
        return result.rowcount or 0
