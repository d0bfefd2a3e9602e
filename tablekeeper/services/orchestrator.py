"""Recalculation orchestrator.

The unit of work a worker runs for one calculation job:

1. Fetch the league roster and all finished matches
2. Snapshot the current table (skipped at season start, when none exists)
3. Compute the new table and check its invariants
4. Replace the published table atomically, read it back and check it again
5. Return a result summary; the worker reports it to the queue

A failed job leaves the previously published table in place. If a failure
during step 4 left the store different from the pre-write table, the
snapshot from step 2 is restored (or the table cleared when there was none).
"""

import asyncio
import time
from collections.abc import Awaitable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

import structlog
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from tablekeeper.errors import CalculationInvariantViolation, TableKeeperError, TransientError
from tablekeeper.services.queue.jobs import CalculationJob
from tablekeeper.services.snapshots import SnapshotManager
from tablekeeper.services.standings import compute, verify_table
from tablekeeper.services.standings.table import Table
from tablekeeper.services.stores import MatchStore, TableStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Store failures worth another attempt
TRANSIENT_STORE_ERRORS = (OSError, OperationalError, InterfaceError, PoolTimeoutError)


@dataclass
class CalculationResult:
    """Outcome of one successful recalculation."""

    league_id: int
    season_id: int
    entries: int
    matches: int
    snapshot_id: str | None
    duration_ms: float
    computation_ms: float
    job_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _same_table(a: Table | None, b: Table | None) -> bool:
    entries_a = a.entries if a is not None else ()
    entries_b = b.entries if b is not None else ()
    return entries_a == entries_b


class RecalculationOrchestrator:
    """Snapshot, compute, persist, and recover for one league table."""

    def __init__(
        self,
        match_store: MatchStore,
        table_store: TableStore,
        snapshots: SnapshotManager,
        io_timeout: float = 10.0,
        verify_persisted: bool = True,
        warning_ms: float = 2000.0,
    ):
        """
        Initialize the orchestrator.

        Args:
            match_store: Source of rosters and finished matches
            table_store: Published table storage
            snapshots: Snapshot manager used before overwriting and for recovery
            io_timeout: Seconds allowed for each store call
            verify_persisted: Read the table back after writing and check it
            warning_ms: Log a warning when computation takes longer
        """
        self.match_store = match_store
        self.table_store = table_store
        self.snapshots = snapshots
        self.io_timeout = io_timeout
        self.verify_persisted = verify_persisted
        self.warning_ms = warning_ms

    async def run(self, job: CalculationJob) -> CalculationResult:
        """Execute a claimed calculation job."""
        return await self.recalculate(job.league_id, job.season_id, job_id=job.id)

    async def recalculate(
        self, league_id: int, season_id: int, job_id: str | None = None
    ) -> CalculationResult:
        log = logger.bind(job_id=job_id, league_id=league_id, season_id=season_id)
        started = time.perf_counter()

        roster = await self._io(self.match_store.list_teams(league_id, season_id), "list_teams")
        matches = await self._io(
            self.match_store.list_finished_matches(league_id, season_id),
            "list_finished_matches",
        )
        previous = await self._io(
            self.table_store.get_current_table(league_id, season_id), "get_current_table"
        )

        snapshot_id = None
        if previous is not None:
            snapshot_id = await self._io(
                self.snapshots.snapshot(
                    league_id,
                    season_id,
                    description=f"Automatic snapshot before recalculation ({job_id or 'direct'})",
                    table=previous,
                ),
                "snapshot",
            )

        compute_started = time.perf_counter()
        team_ids = [team_id for team_id, _ in roster]
        table = compute(
            matches,
            team_ids,
            league_id=league_id,
            season_id=season_id,
            team_names={team_id: name for team_id, name in roster if name},
        )
        verify_table(table, expected_teams=team_ids)
        computation_ms = (time.perf_counter() - compute_started) * 1000

        if computation_ms > self.warning_ms:
            log.warning(
                "slow_table_calculation",
                computation_ms=round(computation_ms, 1),
                teams=len(team_ids),
                matches=len(matches),
            )

        await self._persist(league_id, season_id, table, previous, snapshot_id, log)

        result = CalculationResult(
            job_id=job_id,
            league_id=league_id,
            season_id=season_id,
            entries=len(table),
            matches=len(matches),
            snapshot_id=snapshot_id,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            computation_ms=round(computation_ms, 2),
        )
        log.info(
            "table_recalculated",
            entries=result.entries,
            matches=result.matches,
            snapshot_id=snapshot_id,
            duration_ms=result.duration_ms,
        )
        return result

    async def _persist(
        self,
        league_id: int,
        season_id: int,
        table: Table,
        previous: Table | None,
        snapshot_id: str | None,
        log,
    ) -> None:
        try:
            await self._io(
                self.table_store.replace_table(league_id, season_id, table), "replace_table"
            )
            if self.verify_persisted:
                stored = await self._io(
                    self.table_store.get_current_table(league_id, season_id),
                    "verify_persisted_table",
                )
                if not _same_table(stored, table):
                    raise CalculationInvariantViolation(
                        "Persisted table differs from calculated table",
                        details={"stored_entries": len(stored) if stored else 0,
                                 "calculated_entries": len(table)},
                    )
                if stored is not None:
                    verify_table(stored)
        except Exception as e:
            log.error("table_persist_failed", error=str(e), error_type=type(e).__name__)
            await self._recover(league_id, season_id, previous, snapshot_id, log)
            raise

    async def _recover(
        self,
        league_id: int,
        season_id: int,
        previous: Table | None,
        snapshot_id: str | None,
        log,
    ) -> None:
        """Undo a partial write so readers never see an intermediate table."""
        try:
            current = await self._io(
                self.table_store.get_current_table(league_id, season_id),
                "read_after_failure",
            )
            if _same_table(current, previous):
                log.info("table_untouched_after_failure")
                return
        except Exception as e:
            # State unknown; restoring is safe either way
            log.warning("read_after_failure_failed", error=str(e))

        try:
            if snapshot_id is not None:
                await self.snapshots.rollback(snapshot_id)
            else:
                await self._io(
                    self.table_store.replace_table(
                        league_id,
                        season_id,
                        Table(league_id=league_id, season_id=season_id, entries=()),
                        source="rollback:clear",
                    ),
                    "clear_table",
                )
            log.warning("partial_write_rolled_back", snapshot_id=snapshot_id)
        except Exception as e:
            log.critical(
                "rollback_after_failure_failed",
                snapshot_id=snapshot_id,
                error=str(e),
            )

    async def _io(self, awaitable: Awaitable[T], operation: str) -> T:
        """Await a store call with the I/O timeout, mapping transient failures."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.io_timeout)
        except TableKeeperError:
            raise
        except asyncio.TimeoutError as e:
            raise TransientError(
                f"{operation} timed out after {self.io_timeout}s",
                details={"operation": operation},
            ) from e
        except TRANSIENT_STORE_ERRORS as e:
            raise TransientError(
                f"{operation} failed: {e}",
                details={"operation": operation},
            ) from e
