"""Snapshot and rollback management.

Takes immutable copies of the published table before it is overwritten and
restores them on demand. Snapshots are never updated; the only way they
disappear is the retention pruning run by the maintenance task.
"""

import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog

from tablekeeper.errors import SnapshotCorrupted, SnapshotNotFound
from tablekeeper.services.standings.table import Snapshot, Table, entries_checksum
from tablekeeper.services.stores import SnapshotRepository, TableStore

logger = structlog.get_logger(__name__)


def generate_snapshot_id(league_id: int, season_id: int, now: datetime) -> str:
    return f"snapshot_{league_id}_{season_id}_{now:%Y%m%dT%H%M%S}_{uuid.uuid4().hex[:8]}"


class SnapshotManager:
    """
    Create, list, restore and prune table snapshots.

    Restores replace the whole table through ``TableStore.replace_table``,
    so readers see either the old or the restored table, never a mix.
    """

    def __init__(
        self,
        repository: SnapshotRepository,
        table_store: TableStore,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repository = repository
        self.table_store = table_store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def snapshot(
        self,
        league_id: int,
        season_id: int,
        description: str | None = None,
        created_by: str | None = None,
        table: Table | None = None,
    ) -> str:
        """
        Capture the current table of a league and season.

        Args:
            league_id: League of the table
            season_id: Season of the table
            description: Free text shown in listings
            created_by: Who requested the snapshot (None for automatic)
            table: Table to store instead of reading the current one

        Returns:
            Snapshot id
        """
        if table is None:
            table = await self.table_store.get_current_table(league_id, season_id)
        if table is None:
            table = Table(league_id=league_id, season_id=season_id, entries=())

        now = self._clock()
        snapshot = Snapshot(
            id=generate_snapshot_id(league_id, season_id, now),
            league_id=league_id,
            season_id=season_id,
            table=Table(league_id=league_id, season_id=season_id, entries=table.entries),
            description=description or f"Snapshot for league {league_id}, season {season_id}",
            created_at=now,
            checksum=entries_checksum(table),
            created_by=created_by,
        )
        await self.repository.add(snapshot)

        logger.info(
            "snapshot_created",
            snapshot_id=snapshot.id,
            league_id=league_id,
            season_id=season_id,
            entries=snapshot.entry_count,
        )
        return snapshot.id

    async def list_snapshots(
        self, league_id: int | None = None, season_id: int | None = None
    ) -> list[Snapshot]:
        """Snapshots newest first, optionally filtered by league and season."""
        snapshots = await self.repository.find(league_id, season_id)
        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)

    async def get_snapshot(self, snapshot_id: str) -> Snapshot:
        snapshot = await self.repository.get(snapshot_id)
        if snapshot is None:
            raise SnapshotNotFound(
                f"Snapshot not found: {snapshot_id}",
                details={"snapshot_id": snapshot_id},
            )
        return snapshot

    def validate(self, snapshot: Snapshot) -> None:
        """Check the stored checksum against the stored entries."""
        actual = entries_checksum(snapshot.table)
        if actual != snapshot.checksum:
            logger.error(
                "snapshot_checksum_mismatch",
                snapshot_id=snapshot.id,
                expected=snapshot.checksum,
                actual=actual,
            )
            raise SnapshotCorrupted(
                f"Snapshot checksum validation failed: {snapshot.id}",
                details={"snapshot_id": snapshot.id},
            )

    async def rollback(self, snapshot_id: str, backup: bool = False) -> int:
        """
        Atomically replace the current table with a snapshot's entries.

        Args:
            snapshot_id: Snapshot to restore
            backup: Snapshot the pre-rollback table first

        Returns:
            Number of restored entries

        Raises:
            SnapshotNotFound: if the id is unknown
            SnapshotCorrupted: if the payload fails checksum validation
        """
        snapshot = await self.get_snapshot(snapshot_id)
        self.validate(snapshot)

        backup_id = None
        if backup:
            backup_id = await self.snapshot(
                snapshot.league_id,
                snapshot.season_id,
                description=f"Pre-restore backup before {snapshot_id}",
            )

        await self.table_store.replace_table(
            snapshot.league_id,
            snapshot.season_id,
            snapshot.table,
            source=f"snapshot_restore:{snapshot_id}",
        )

        logger.info(
            "snapshot_restored",
            snapshot_id=snapshot_id,
            league_id=snapshot.league_id,
            season_id=snapshot.season_id,
            restored_entries=snapshot.entry_count,
            backup_snapshot_id=backup_id,
        )
        return snapshot.entry_count

    async def prune(self, max_age_days: int, keep_per_table: int = 0) -> int:
        """
        Delete snapshots older than ``max_age_days``.

        The newest ``keep_per_table`` snapshots of each league and season
        are kept regardless of age.

        Returns:
            Number of deleted snapshots
        """
        cutoff = self._clock() - timedelta(days=max_age_days)
        by_table: dict[tuple[int, int], list[Snapshot]] = defaultdict(list)
        for snapshot in await self.list_snapshots():
            by_table[(snapshot.league_id, snapshot.season_id)].append(snapshot)

        expired = [
            snapshot.id
            for snapshots in by_table.values()
            for snapshot in snapshots[keep_per_table:]
            if snapshot.created_at < cutoff
        ]
        deleted = await self.repository.delete_many(expired)

        logger.info(
            "snapshots_pruned",
            deleted=deleted,
            max_age_days=max_age_days,
            keep_per_table=keep_per_table,
        )
        return deleted
