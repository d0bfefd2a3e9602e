"""Pytest configuration and fixtures for TableKeeper tests."""

from datetime import datetime, timedelta, timezone

import pytest

from tablekeeper.services.queue import CalculationQueue, RetryPolicy, no_jitter
from tablekeeper.services.snapshots import SnapshotManager
from tablekeeper.services.standings import MatchResult, MatchStatus


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InMemoryMatchStore:
    """Match store over plain lists."""

    def __init__(self):
        self.teams: dict[tuple[int, int], list[tuple[int, str | None]]] = {}
        self.matches: dict[tuple[int, int], list[MatchResult]] = {}
        self.error: BaseException | None = None

    def add_teams(self, league_id: int, season_id: int, teams: dict[int, str]) -> None:
        self.teams[(league_id, season_id)] = list(teams.items())

    def add_result(
        self,
        league_id: int,
        season_id: int,
        home: int,
        away: int,
        home_goals: int | None,
        away_goals: int | None,
        status: MatchStatus = MatchStatus.FINISHED,
    ) -> None:
        self.matches.setdefault((league_id, season_id), []).append(
            MatchResult(
                league_id=league_id,
                season_id=season_id,
                home_team_id=home,
                away_team_id=away,
                home_goals=home_goals,
                away_goals=away_goals,
                status=status,
            )
        )

    async def list_finished_matches(self, league_id, season_id):
        if self.error is not None:
            raise self.error
        return [
            m for m in self.matches.get((league_id, season_id), [])
            if m.status == MatchStatus.FINISHED
        ]

    async def list_teams(self, league_id, season_id):
        if self.error is not None:
            raise self.error
        return list(self.teams.get((league_id, season_id), []))


class InMemoryTableStore:
    """Table store with optional failure injection on replace."""

    def __init__(self):
        self.tables = {}
        self.replace_calls = []
        self.fail_replace: BaseException | None = None
        self.partial_write = False
        self.corrupt_reads = False

    async def get_current_table(self, league_id, season_id):
        table = self.tables.get((league_id, season_id))
        if table is not None and self.corrupt_reads and table.entries:
            # Drop the last row to simulate a write that did not land
            return type(table)(table.league_id, table.season_id, table.entries[:-1])
        return table

    async def replace_table(self, league_id, season_id, table, source="calculation"):
        self.replace_calls.append(source)
        if self.fail_replace is not None:
            error, self.fail_replace = self.fail_replace, None
            if self.partial_write:
                self.tables[(league_id, season_id)] = type(table)(
                    league_id, season_id, table.entries[:1]
                )
            raise error
        if not table.entries:
            self.tables.pop((league_id, season_id), None)
        else:
            self.tables[(league_id, season_id)] = table


class InMemorySnapshotRepository:
    """Snapshot archive in a dict."""

    def __init__(self):
        self.snapshots = {}

    async def add(self, snapshot):
        self.snapshots[snapshot.id] = snapshot

    async def get(self, snapshot_id):
        return self.snapshots.get(snapshot_id)

    async def find(self, league_id=None, season_id=None):
        return [
            s for s in self.snapshots.values()
            if (league_id is None or s.league_id == league_id)
            and (season_id is None or s.season_id == season_id)
        ]

    async def delete_many(self, snapshot_ids):
        deleted = 0
        for snapshot_id in snapshot_ids:
            if self.snapshots.pop(snapshot_id, None) is not None:
                deleted += 1
        return deleted


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the table cache."""

    def __init__(self):
        self.data = {}
        self.expiry = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value.encode() if isinstance(value, str) else value
        self.expiry[key] = ex

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    """Queue with deterministic backoff and ids."""
    counter = iter(range(1, 10_000))
    return CalculationQueue(
        max_size=10,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0, jitter=no_jitter),
        stuck_timeout=30.0,
        clock=clock,
        id_factory=lambda: f"job_{next(counter)}",
    )


@pytest.fixture
def match_store():
    return InMemoryMatchStore()


@pytest.fixture
def table_store():
    return InMemoryTableStore()


@pytest.fixture
def snapshot_repository():
    return InMemorySnapshotRepository()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def snapshots(snapshot_repository, table_store, clock):
    return SnapshotManager(snapshot_repository, table_store, clock=clock)


@pytest.fixture
def abc_league(match_store):
    """Three teams, three finished matches: A 2-1 B, B 1-1 C, C 0-3 A."""
    match_store.add_teams(1, 2024, {1: "A", 2: "B", 3: "C"})
    match_store.add_result(1, 2024, 1, 2, 2, 1)
    match_store.add_result(1, 2024, 2, 3, 1, 1)
    match_store.add_result(1, 2024, 3, 1, 0, 3)
    return match_store
