"""Unit tests for the table automation wiring."""

import asyncio

import pytest

from tablekeeper.config.automation import AutomationConfig
from tablekeeper.services.automation import TableAutomation
from tablekeeper.services.cache import TableCache
from tablekeeper.services.standings import compute

CACHE_KEY = "tablekeeper:table:1:2024"


class HeldReadStore:
    """Table store whose next read holds its result until released."""

    def __init__(self, inner):
        self.inner = inner
        self.hold = False
        self.loaded = asyncio.Event()
        self.release = asyncio.Event()

    async def get_current_table(self, league_id, season_id):
        table = await self.inner.get_current_table(league_id, season_id)
        if self.hold:
            self.hold = False
            self.loaded.set()
            await self.release.wait()
        return table

    async def replace_table(self, league_id, season_id, table, source="calculation"):
        await self.inner.replace_table(league_id, season_id, table, source=source)


class TestConstruction:
    """Test how the service is assembled."""

    def test_injected_empty_queue_is_used(
        self, queue, abc_league, table_store, snapshot_repository
    ):
        assert len(queue) == 0

        automation = TableAutomation(
            AutomationConfig(),
            match_store=abc_league,
            table_store=table_store,
            snapshot_repository=snapshot_repository,
            queue=queue,
        )

        assert automation.queue is queue
        assert automation.pool.queue is queue
        job_id = automation.request_recalculation(1, 2024)
        assert queue.get(job_id).priority.value == "normal"

    def test_default_queue_uses_config(self, abc_league, table_store, snapshot_repository):
        config = AutomationConfig()
        config.queue.max_size = 7

        automation = TableAutomation(
            config,
            match_store=abc_league,
            table_store=table_store,
            snapshot_repository=snapshot_repository,
        )

        assert automation.queue.max_size == 7


class TestCachedTables:
    """Recalculation and snapshots must see the store, not the cache."""

    @pytest.fixture
    def held_store(self, table_store):
        return HeldReadStore(table_store)

    @pytest.fixture
    def automation(self, queue, abc_league, held_store, snapshot_repository, fake_redis):
        return TableAutomation(
            AutomationConfig(),
            match_store=abc_league,
            table_store=held_store,
            snapshot_repository=snapshot_repository,
            queue=queue,
            table_cache=TableCache(fake_redis),
        )

    @pytest.mark.asyncio
    async def test_reader_straddling_recalculation(
        self, automation, abc_league, held_store, table_store
    ):
        await automation.orchestrator.recalculate(1, 2024)
        abc_league.add_result(1, 2024, 1, 3, 1, 0)

        held_store.hold = True
        reader = asyncio.create_task(automation.get_table(1, 2024))
        await held_store.loaded.wait()
        await automation.orchestrator.recalculate(1, 2024)
        held_store.release.set()
        await reader

        published = await table_store.get_current_table(1, 2024)
        assert published.entry_for(1).played == 3
        assert await automation.get_table(1, 2024) == published

        abc_league.add_result(1, 2024, 2, 1, 0, 0)
        result = await automation.orchestrator.recalculate(1, 2024)
        snapshot = await automation.snapshots.get_snapshot(result.snapshot_id)
        assert snapshot.table.entries == published.entries

    @pytest.mark.asyncio
    async def test_stale_cache_entry_is_not_snapshotted(
        self, automation, abc_league, table_store, fake_redis
    ):
        await automation.orchestrator.recalculate(1, 2024)
        published = await table_store.get_current_table(1, 2024)
        stale = compute([], [1, 2, 3], league_id=1, season_id=2024)
        fake_redis.data[CACHE_KEY] = stale.to_json().encode()

        abc_league.add_result(1, 2024, 1, 3, 1, 0)
        result = await automation.orchestrator.recalculate(1, 2024)

        snapshot = await automation.snapshots.get_snapshot(result.snapshot_id)
        assert snapshot.table.entries == published.entries
        assert CACHE_KEY not in fake_redis.data
        assert await automation.get_table(1, 2024) == await table_store.get_current_table(1, 2024)
