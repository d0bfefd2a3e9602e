"""Unit tests for snapshots and rollback."""

from dataclasses import replace

import pytest

from tablekeeper.errors import SnapshotCorrupted, SnapshotNotFound
from tablekeeper.services.standings import MatchResult, compute, entries_checksum


def make_table(league_id=1, season_id=2024, score=(2, 1)):
    match = MatchResult(
        league_id=league_id,
        season_id=season_id,
        home_team_id=1,
        away_team_id=2,
        home_goals=score[0],
        away_goals=score[1],
    )
    return compute([match], [1, 2], league_id=league_id, season_id=season_id)


class TestSnapshotManager:
    """Test snapshot creation, listing and restore."""

    @pytest.mark.asyncio
    async def test_snapshot_copies_current_table(self, snapshots, table_store):
        table = make_table()
        await table_store.replace_table(1, 2024, table)

        snapshot_id = await snapshots.snapshot(1, 2024, description="before matchday 3")
        snapshot = await snapshots.get_snapshot(snapshot_id)

        assert snapshot.table.entries == table.entries
        assert snapshot.description == "before matchday 3"
        assert snapshot.entry_count == 2
        assert snapshot.checksum == entries_checksum(table)
        assert snapshot_id.startswith("snapshot_1_2024_")

    @pytest.mark.asyncio
    async def test_snapshot_of_missing_table_is_empty(self, snapshots):
        snapshot_id = await snapshots.snapshot(1, 2024)
        snapshot = await snapshots.get_snapshot(snapshot_id)
        assert snapshot.entry_count == 0

    @pytest.mark.asyncio
    async def test_rollback_restores_equal_table(self, snapshots, table_store):
        original = make_table(score=(2, 1))
        await table_store.replace_table(1, 2024, original)
        snapshot_id = await snapshots.snapshot(1, 2024)

        await table_store.replace_table(1, 2024, make_table(score=(0, 3)))
        restored = await snapshots.rollback(snapshot_id)

        current = await table_store.get_current_table(1, 2024)
        assert restored == 2
        assert current.entries == original.entries
        assert table_store.replace_calls[-1] == f"snapshot_restore:{snapshot_id}"

    @pytest.mark.asyncio
    async def test_recompute_after_rollback_reproduces_table(self, snapshots, table_store):
        original = make_table(score=(1, 1))
        await table_store.replace_table(1, 2024, original)
        snapshot_id = await snapshots.snapshot(1, 2024)
        await table_store.replace_table(1, 2024, make_table(score=(4, 0)))

        await snapshots.rollback(snapshot_id)
        current = await table_store.get_current_table(1, 2024)

        assert make_table(score=(1, 1)).entries == current.entries

    @pytest.mark.asyncio
    async def test_rollback_with_backup_snapshots_current_table(self, snapshots, table_store):
        await table_store.replace_table(1, 2024, make_table(score=(2, 1)))
        snapshot_id = await snapshots.snapshot(1, 2024)
        newer = make_table(score=(0, 3))
        await table_store.replace_table(1, 2024, newer)

        await snapshots.rollback(snapshot_id, backup=True)

        listed = await snapshots.list_snapshots(1, 2024)
        backups = [s for s in listed if s.id != snapshot_id]
        assert len(backups) == 1
        assert backups[0].table.entries == newer.entries

    @pytest.mark.asyncio
    async def test_rollback_unknown_snapshot_raises(self, snapshots):
        with pytest.raises(SnapshotNotFound) as exc_info:
            await snapshots.rollback("snapshot_missing")
        assert exc_info.value.http_status == 404

    @pytest.mark.asyncio
    async def test_corrupted_snapshot_is_not_restored(
        self, snapshots, snapshot_repository, table_store
    ):
        current = make_table(score=(2, 1))
        await table_store.replace_table(1, 2024, current)
        snapshot_id = await snapshots.snapshot(1, 2024)

        stored = snapshot_repository.snapshots[snapshot_id]
        tampered = replace(stored, table=make_table(score=(5, 0)))
        snapshot_repository.snapshots[snapshot_id] = tampered
        calls_before = len(table_store.replace_calls)

        with pytest.raises(SnapshotCorrupted):
            await snapshots.rollback(snapshot_id)
        assert len(table_store.replace_calls) == calls_before

    @pytest.mark.asyncio
    async def test_list_is_newest_first_and_filtered(self, snapshots, clock):
        first = await snapshots.snapshot(1, 2024)
        clock.advance(60)
        second = await snapshots.snapshot(1, 2024)
        await snapshots.snapshot(2, 2024)

        listed = await snapshots.list_snapshots(1, 2024)
        assert [s.id for s in listed] == [second, first]
        assert len(await snapshots.list_snapshots()) == 3


class TestSnapshotPruning:
    """Test retention pruning."""

    @pytest.mark.asyncio
    async def test_prune_deletes_old_snapshots(self, snapshots, clock):
        old = await snapshots.snapshot(1, 2024)
        clock.advance(40 * 86400)
        recent = await snapshots.snapshot(1, 2024)

        deleted = await snapshots.prune(max_age_days=30)

        remaining = [s.id for s in await snapshots.list_snapshots()]
        assert deleted == 1
        assert remaining == [recent]
        assert old not in remaining

    @pytest.mark.asyncio
    async def test_prune_keeps_newest_per_table(self, snapshots, clock):
        ids = []
        for _ in range(3):
            ids.append(await snapshots.snapshot(1, 2024))
            clock.advance(86400)
        other = await snapshots.snapshot(2, 2024)
        clock.advance(60 * 86400)

        deleted = await snapshots.prune(max_age_days=30, keep_per_table=2)

        remaining = {s.id for s in await snapshots.list_snapshots()}
        assert deleted == 1
        assert remaining == {ids[1], ids[2], other}
