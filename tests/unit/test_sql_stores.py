"""SQL store tests against in-memory SQLite (aiosqlite)."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from tablekeeper.models.base import Base, get_session_factory
from tablekeeper.models.domain import Match, SeasonTeam, Team
from tablekeeper.services.orchestrator import RecalculationOrchestrator
from tablekeeper.services.snapshots import SnapshotManager
from tablekeeper.services.standings import MatchStatus, compute
from tablekeeper.services.stores import (
    SqlMatchStore,
    SqlSnapshotRepository,
    SqlTableStore,
)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def seeded(session_factory):
    """League 1 / 2024 with teams A, B, C and the three-match example."""
    async with session_factory() as session:
        session.add_all([Team(id=1, name="A"), Team(id=2, name="B"), Team(id=3, name="C")])
        session.add_all([
            SeasonTeam(league_id=1, season_id=2024, team_id=team_id) for team_id in (1, 2, 3)
        ])
        session.add_all([
            Match(league_id=1, season_id=2024, matchday=1, home_team_id=1, away_team_id=2,
                  home_goals=2, away_goals=1, status="finished"),
            Match(league_id=1, season_id=2024, matchday=2, home_team_id=2, away_team_id=3,
                  home_goals=1, away_goals=1, status="finished"),
            Match(league_id=1, season_id=2024, matchday=3, home_team_id=3, away_team_id=1,
                  home_goals=0, away_goals=3, status="finished"),
            Match(league_id=1, season_id=2024, matchday=4, home_team_id=1, away_team_id=3,
                  status="scheduled"),
        ])
        await session.commit()
    return session_factory


class TestSqlMatchStore:
    """Test match and roster reads."""

    @pytest.mark.asyncio
    async def test_lists_only_finished_matches(self, seeded):
        matches = await SqlMatchStore(seeded).list_finished_matches(1, 2024)

        assert len(matches) == 3
        assert all(m.status == MatchStatus.FINISHED for m in matches)
        assert [m.matchday for m in matches] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_lists_roster_with_names(self, seeded):
        teams = await SqlMatchStore(seeded).list_teams(1, 2024)
        assert teams == [(1, "A"), (2, "B"), (3, "C")]

    @pytest.mark.asyncio
    async def test_other_league_is_empty(self, seeded):
        store = SqlMatchStore(seeded)
        assert await store.list_finished_matches(2, 2024) == []
        assert await store.list_teams(2, 2024) == []


class TestSqlTableStore:
    """Test table replace and read."""

    @pytest.mark.asyncio
    async def test_missing_table_is_none(self, session_factory):
        assert await SqlTableStore(session_factory).get_current_table(1, 2024) is None

    @pytest.mark.asyncio
    async def test_replace_round_trips(self, seeded):
        store = SqlTableStore(seeded)
        table = compute([], [1, 2, 3], league_id=1, season_id=2024, team_names={1: "A"})

        await store.replace_table(1, 2024, table)

        assert await store.get_current_table(1, 2024) == table

    @pytest.mark.asyncio
    async def test_replace_removes_previous_rows(self, seeded):
        store = SqlTableStore(seeded)
        await store.replace_table(1, 2024, compute([], [1, 2, 3], league_id=1, season_id=2024))
        smaller = compute([], [1, 2], league_id=1, season_id=2024)

        await store.replace_table(1, 2024, smaller)

        assert await store.get_current_table(1, 2024) == smaller


class TestSqlSnapshotRepository:
    """Test snapshot persistence."""

    @pytest.mark.asyncio
    async def test_snapshot_survives_round_trip(self, seeded):
        table_store = SqlTableStore(seeded)
        manager = SnapshotManager(SqlSnapshotRepository(seeded), table_store)
        table = compute([], [1, 2, 3], league_id=1, season_id=2024)
        await table_store.replace_table(1, 2024, table)

        snapshot_id = await manager.snapshot(1, 2024, created_by="tests")
        snapshot = await manager.get_snapshot(snapshot_id)

        assert snapshot.table == table
        assert snapshot.created_by == "tests"
        assert snapshot.created_at.tzinfo is not None
        manager.validate(snapshot)

    @pytest.mark.asyncio
    async def test_find_and_delete(self, seeded):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        times = iter([now, now + timedelta(hours=1), now + timedelta(hours=2)])
        manager = SnapshotManager(
            SqlSnapshotRepository(seeded), SqlTableStore(seeded), clock=lambda: next(times)
        )
        first = await manager.snapshot(1, 2024)
        second = await manager.snapshot(1, 2024)
        await manager.snapshot(2, 2024)

        listed = await manager.list_snapshots(1, 2024)
        assert [s.id for s in listed] == [second, first]

        assert await SqlSnapshotRepository(seeded).delete_many([first, "snapshot_missing"]) == 1
        assert [s.id for s in await manager.list_snapshots(1)] == [second]


class TestEndToEnd:
    """Orchestrator over the SQL stores."""

    @pytest.mark.asyncio
    async def test_recalculation_and_rollback(self, seeded):
        table_store = SqlTableStore(seeded)
        snapshots = SnapshotManager(SqlSnapshotRepository(seeded), table_store)
        orchestrator = RecalculationOrchestrator(SqlMatchStore(seeded), table_store, snapshots)

        await orchestrator.recalculate(1, 2024)
        first = await table_store.get_current_table(1, 2024)
        assert [(e.team_id, e.points) for e in first.entries] == [(1, 6), (2, 1), (3, 1)]

        async with seeded() as session:
            session.add(Match(league_id=1, season_id=2024, matchday=5, home_team_id=3,
                              away_team_id=2, home_goals=2, away_goals=0, status="finished"))
            await session.commit()

        result = await orchestrator.recalculate(1, 2024)
        second = await table_store.get_current_table(1, 2024)
        assert second.entry_for(3).points == 4

        await snapshots.rollback(result.snapshot_id)
        assert await table_store.get_current_table(1, 2024) == first
