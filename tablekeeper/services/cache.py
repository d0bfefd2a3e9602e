"""Redis cache for published league tables.

Fails open: when Redis is unavailable reads fall through to the table store
and writes are skipped, so the cache can never block a recalculation.
"""

import json

import redis.asyncio as redis
import structlog

from tablekeeper.services.standings.table import Table
from tablekeeper.services.stores import TableStore

logger = structlog.get_logger(__name__)


class TableCache:
    """Cache of serialised tables keyed by league and season."""

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl: int = 300,
        key_prefix: str = "tablekeeper:table",
    ):
        """
        Initialize the cache.

        Args:
            redis_client: Redis client
            ttl: Entry lifetime in seconds
            key_prefix: Redis key prefix
        """
        self.redis = redis_client
        self.ttl = ttl
        self.key_prefix = key_prefix

    def _get_key(self, league_id: int, season_id: int) -> str:
        return f"{self.key_prefix}:{league_id}:{season_id}"

    async def get(self, league_id: int, season_id: int) -> Table | None:
        key = self._get_key(league_id, season_id)
        try:
            raw = await self.redis.get(key)
        except Exception as e:
            logger.warning("table_cache_read_error", error=str(e), key=key)
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return Table.from_entries(data["league_id"], data["season_id"], data["entries"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("table_cache_decode_error", error=str(e), key=key)
            return None

    async def set(self, table: Table) -> None:
        key = self._get_key(table.league_id, table.season_id)
        try:
            await self.redis.set(key, table.to_json(), ex=self.ttl)
        except Exception as e:
            logger.warning("table_cache_write_error", error=str(e), key=key)

    async def invalidate(self, league_id: int, season_id: int) -> None:
        key = self._get_key(league_id, season_id)
        try:
            await self.redis.delete(key)
        except Exception as e:
            logger.warning("table_cache_invalidate_error", error=str(e), key=key)


class CachingTableStore:
    """
    Read-through cache in front of a table store.

    Every replace bumps a per-table generation before and after the write.
    A read that started under an older generation returns what it loaded
    but does not fill the cache, so a slow reader can never re-cache a
    table that has since been replaced.

    Recalculation and rollback must not read through the cache; they use
    the view returned by ``primary()``, which reads the store directly and
    still keeps the cache in step on writes.
    """

    def __init__(self, store: TableStore, cache: TableCache, read_through: bool = True):
        self.store = store
        self.cache = cache
        self.read_through = read_through
        self._generations: dict[tuple[int, int], int] = {}

    def primary(self) -> "CachingTableStore":
        """View with uncached reads that shares this store's generations."""
        view = CachingTableStore(self.store, self.cache, read_through=False)
        view._generations = self._generations
        return view

    def _bump(self, key: tuple[int, int]) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    async def get_current_table(self, league_id: int, season_id: int) -> Table | None:
        if not self.read_through:
            return await self.store.get_current_table(league_id, season_id)

        cached = await self.cache.get(league_id, season_id)
        if cached is not None:
            return cached

        key = (league_id, season_id)
        generation = self._generations.get(key, 0)
        table = await self.store.get_current_table(league_id, season_id)
        if table is None:
            return None
        if self._generations.get(key, 0) != generation:
            logger.debug(
                "table_cache_fill_skipped",
                league_id=league_id,
                season_id=season_id,
            )
            return table
        await self.cache.set(table)
        return table

    async def replace_table(
        self,
        league_id: int,
        season_id: int,
        table: Table,
        source: str = "calculation",
    ) -> None:
        key = (league_id, season_id)
        self._bump(key)
        try:
            await self.store.replace_table(league_id, season_id, table, source=source)
        finally:
            # Invalidate even on failure; the store may hold a partial write
            self._bump(key)
            await self.cache.invalidate(league_id, season_id)
