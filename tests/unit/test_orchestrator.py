"""Unit tests for the recalculation orchestrator.

CRITICAL TESTS:
- A failed recalculation never leaves a partial table published
- The pre-recalculation table is snapshotted
- Store timeouts become retryable errors
"""

import asyncio

import pytest

from tablekeeper.errors import CalculationInvariantViolation, InputError, TransientError
from tablekeeper.services.orchestrator import RecalculationOrchestrator
from tablekeeper.services.standings import MatchStatus


@pytest.fixture
def orchestrator(abc_league, table_store, snapshots):
    return RecalculationOrchestrator(abc_league, table_store, snapshots, io_timeout=1.0)


class TestRecalculate:
    """Test the happy path."""

    @pytest.mark.asyncio
    async def test_first_calculation_publishes_table(self, orchestrator, table_store):
        result = await orchestrator.recalculate(1, 2024, job_id="job_1")

        table = await table_store.get_current_table(1, 2024)
        assert [e.team_id for e in table.entries] == [1, 2, 3]
        assert [e.team_name for e in table.entries] == ["A", "B", "C"]
        assert result.entries == 3
        assert result.matches == 3
        # No table existed, so nothing to snapshot
        assert result.snapshot_id is None

    @pytest.mark.asyncio
    async def test_existing_table_is_snapshotted_first(
        self, orchestrator, table_store, snapshots, abc_league
    ):
        await orchestrator.recalculate(1, 2024)
        before = await table_store.get_current_table(1, 2024)

        abc_league.add_result(1, 2024, 2, 1, 4, 0)
        result = await orchestrator.recalculate(1, 2024)

        snapshot = await snapshots.get_snapshot(result.snapshot_id)
        assert snapshot.table.entries == before.entries
        after = await table_store.get_current_table(1, 2024)
        assert after.entry_for(2).points == 4

    @pytest.mark.asyncio
    async def test_recalculation_is_idempotent(self, orchestrator, table_store):
        await orchestrator.recalculate(1, 2024)
        first = await table_store.get_current_table(1, 2024)
        await orchestrator.recalculate(1, 2024)
        second = await table_store.get_current_table(1, 2024)

        assert first == second

    @pytest.mark.asyncio
    async def test_unfinished_matches_are_ignored(self, orchestrator, table_store, abc_league):
        abc_league.add_result(1, 2024, 1, 3, None, None, status=MatchStatus.SCHEDULED)
        await orchestrator.recalculate(1, 2024)

        table = await table_store.get_current_table(1, 2024)
        assert table.entry_for(1).played == 2

    @pytest.mark.asyncio
    async def test_run_uses_job_key(self, orchestrator, queue, table_store):
        queue.enqueue(1, 2024)
        job = queue.dequeue()

        result = await orchestrator.run(job)

        assert result.job_id == job.id
        assert await table_store.get_current_table(1, 2024) is not None


class TestFailures:
    """Test rollback and error mapping."""

    @pytest.mark.asyncio
    async def test_input_error_leaves_table_untouched(
        self, orchestrator, table_store, abc_league
    ):
        await orchestrator.recalculate(1, 2024)
        published = await table_store.get_current_table(1, 2024)
        abc_league.add_result(1, 2024, 1, 99, 1, 0)

        with pytest.raises(InputError):
            await orchestrator.recalculate(1, 2024)
        assert await table_store.get_current_table(1, 2024) == published

    @pytest.mark.asyncio
    async def test_partial_write_is_rolled_back_to_snapshot(
        self, orchestrator, table_store, abc_league
    ):
        await orchestrator.recalculate(1, 2024)
        published = await table_store.get_current_table(1, 2024)

        abc_league.add_result(1, 2024, 3, 2, 2, 0)
        table_store.fail_replace = ConnectionResetError("connection lost")
        table_store.partial_write = True

        with pytest.raises(TransientError):
            await orchestrator.recalculate(1, 2024)

        restored = await table_store.get_current_table(1, 2024)
        assert restored.entries == published.entries
        assert table_store.replace_calls[-1].startswith("snapshot_restore:")

    @pytest.mark.asyncio
    async def test_failed_first_write_clears_partial_table(self, orchestrator, table_store):
        table_store.fail_replace = ConnectionResetError("connection lost")
        table_store.partial_write = True

        with pytest.raises(TransientError):
            await orchestrator.recalculate(1, 2024)

        assert await table_store.get_current_table(1, 2024) is None
        assert table_store.replace_calls[-1] == "rollback:clear"

    @pytest.mark.asyncio
    async def test_clean_write_failure_needs_no_rollback(self, orchestrator, table_store):
        await orchestrator.recalculate(1, 2024)
        calls = len(table_store.replace_calls)
        table_store.fail_replace = ConnectionResetError("connection lost")

        with pytest.raises(TransientError):
            await orchestrator.recalculate(1, 2024)

        # Only the failed attempt, no restore
        assert len(table_store.replace_calls) == calls + 1

    @pytest.mark.asyncio
    async def test_persisted_mismatch_is_invariant_violation(self, orchestrator, table_store):
        await orchestrator.recalculate(1, 2024)
        table_store.corrupt_reads = True

        with pytest.raises(CalculationInvariantViolation):
            await orchestrator.recalculate(1, 2024)

    @pytest.mark.asyncio
    async def test_store_timeout_becomes_transient_error(self, abc_league, table_store, snapshots):
        async def slow_teams(league_id, season_id):
            await asyncio.sleep(5)
            return []

        abc_league.list_teams = slow_teams
        orchestrator = RecalculationOrchestrator(
            abc_league, table_store, snapshots, io_timeout=0.01
        )

        with pytest.raises(TransientError, match="timed out"):
            await orchestrator.recalculate(1, 2024)

    @pytest.mark.asyncio
    async def test_connection_error_becomes_transient_error(self, orchestrator, abc_league):
        abc_league.error = ConnectionRefusedError("refused")
        with pytest.raises(TransientError) as exc_info:
            await orchestrator.recalculate(1, 2024)
        assert exc_info.value.retryable
