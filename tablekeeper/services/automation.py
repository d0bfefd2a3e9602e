"""Table automation service.

Wires the calculation queue, worker pool, orchestrator, snapshot manager and
health reporter together and is the single entry point for triggering
recalculations. The FastAPI app holds one instance on ``app.state``.
"""

import redis.asyncio as redis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tablekeeper.config.automation import AutomationConfig
from tablekeeper.services.cache import CachingTableStore, TableCache
from tablekeeper.services.health import HealthReporter
from tablekeeper.services.orchestrator import RecalculationOrchestrator
from tablekeeper.services.queue import CalculationQueue, Priority, RetryPolicy, WorkerPool
from tablekeeper.services.queue.retry import proportional_jitter
from tablekeeper.services.snapshots import SnapshotManager
from tablekeeper.services.standings.table import Table
from tablekeeper.services.stores import (
    MatchStore,
    SnapshotRepository,
    SqlMatchStore,
    SqlSnapshotRepository,
    SqlTableStore,
    TableStore,
)

logger = structlog.get_logger(__name__)


class TableAutomation:
    """Facade over the whole recalculation subsystem."""

    def __init__(
        self,
        config: AutomationConfig,
        match_store: MatchStore,
        table_store: TableStore,
        snapshot_repository: SnapshotRepository,
        queue: CalculationQueue | None = None,
        table_cache: TableCache | None = None,
    ):
        self.config = config
        q = config.queue

        # Recalculation and rollback read the store directly; only table
        # reads served to clients go through the cache
        primary_store = table_store
        if table_cache is not None:
            table_store = CachingTableStore(table_store, table_cache)
            primary_store = table_store.primary()

        self.match_store = match_store
        self.table_store = table_store
        self.queue = queue if queue is not None else CalculationQueue(
            max_size=q.max_size,
            retry_policy=RetryPolicy(
                max_attempts=q.max_attempts,
                base_delay=q.retry_base_delay,
                max_delay=q.retry_max_delay,
                jitter=proportional_jitter(q.retry_jitter),
            ),
            stuck_timeout=q.stuck_job_timeout,
            max_completed_jobs=q.max_completed_jobs,
            max_failed_jobs=q.max_failed_jobs,
        )
        self.snapshots = SnapshotManager(snapshot_repository, primary_store)
        self.orchestrator = RecalculationOrchestrator(
            match_store,
            primary_store,
            self.snapshots,
            io_timeout=q.io_timeout,
            warning_ms=config.calculation_warning_ms,
        )
        self.pool = WorkerPool(
            self.queue,
            self.orchestrator,
            size=q.worker_count,
            job_timeout=q.job_timeout,
            poll_interval=q.poll_interval,
            maintenance_interval=q.maintenance_interval,
        )
        self.health = HealthReporter(self.queue, config.health)

    @classmethod
    def from_session_factory(
        cls,
        config: AutomationConfig,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client: redis.Redis | None = None,
    ) -> "TableAutomation":
        """Build the service over the SQL stores, with the Redis cache if enabled."""
        table_cache = None
        if config.cache_enabled and redis_client is not None:
            table_cache = TableCache(redis_client, ttl=config.cache_ttl)
        return cls(
            config,
            match_store=SqlMatchStore(session_factory),
            table_store=SqlTableStore(session_factory),
            snapshot_repository=SqlSnapshotRepository(session_factory),
            table_cache=table_cache,
        )

    def request_recalculation(
        self,
        league_id: int,
        season_id: int,
        priority: Priority | str | None = None,
        trigger: str = "MATCH_RESULT",
        description: str | None = None,
    ) -> str:
        """
        Ask for a league table to be recalculated.

        Called whenever a match result is created, updated or deleted, and
        by operators. Requests for a league and season that already has an
        active job are merged into it.

        Args:
            league_id: League of the changed match
            season_id: Season of the changed match
            priority: Explicit priority, or the trigger's default
            trigger: What caused the request (MATCH_RESULT, MANUAL, SCHEDULED, ...)
            description: Free text shown to operators

        Returns:
            Id of the job that will perform the calculation

        Raises:
            QueueOverload: if the queue is full
        """
        if priority is None:
            priority = self.config.priority_for(trigger)
        return self.queue.enqueue(
            league_id,
            season_id,
            priority=priority,
            trigger=trigger,
            description=description,
        )

    async def get_table(self, league_id: int, season_id: int) -> Table | None:
        """Currently published table."""
        return await self.table_store.get_current_table(league_id, season_id)

    def start(self) -> None:
        if not self.config.enabled:
            logger.info("table_automation_disabled")
            return
        self.pool.start()
        logger.info("table_automation_started", workers=self.pool.size)

    async def stop(self, timeout: float | None = None) -> None:
        await self.pool.stop(timeout=timeout)
        logger.info("table_automation_stopped")
