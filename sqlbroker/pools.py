"""Per-database pool lifecycle: lazy construction, repair and replacement."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .connections import ConnectionPool, PoolFactory, create_asyncpg_pool
from .errors import PoolConnectionError
from .registry import DatabaseRegistry

LOG = logging.getLogger(__name__)


class PoolState(str, Enum):
    """Lifecycle states of the pool bound to one database id."""

    ABSENT = "absent"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


class PoolManager:
    """Owns at most one live pool per database id.

    Construction decisions are single-flight per id: concurrent callers of
    :meth:`ensure_connected` await the same in-flight future instead of each
    building a pool.
    """

    def __init__(self, registry: DatabaseRegistry, factory: PoolFactory | None = None) -> None:
        self._registry = registry
        self._factory = factory or create_asyncpg_pool
        self._pools: dict[str, ConnectionPool] = {}
        self._states: dict[str, PoolState] = {}
        self._inflight: dict[str, asyncio.Future[ConnectionPool]] = {}

    def state(self, database_id: str) -> PoolState:
        pool = self._pools.get(database_id)
        if pool is not None and not pool.connected:
            return PoolState.DISCONNECTED
        return self._states.get(database_id, PoolState.ABSENT)

    def is_connected(self, database_id: str) -> bool:
        pool = self._pools.get(database_id)
        return pool is not None and pool.connected

    def get(self, database_id: str) -> ConnectionPool | None:
        return self._pools.get(database_id)

    async def ensure_connected(self, database_id: str) -> ConnectionPool:
        """Return a connected pool for *database_id*, building or repairing it."""

        pool = self._pools.get(database_id)
        if pool is not None and pool.connected:
            return pool
        pending = self._inflight.get(database_id)
        if pending is None:
            pending = asyncio.ensure_future(self._ensure(database_id))
            self._inflight[database_id] = pending
            pending.add_done_callback(lambda fut: self._settle(database_id, fut))
        return await asyncio.shield(pending)

    def _settle(self, database_id: str, fut: asyncio.Future[ConnectionPool]) -> None:
        self._inflight.pop(database_id, None)
        # Mark the outcome retrieved even when every awaiting caller was cancelled.
        if not fut.cancelled():
            fut.exception()

    def discard(self, database_id: str, pool: ConnectionPool | None = None) -> None:
        """Drop the pool for *database_id* so the next use rebuilds it.

        When *pool* is given, only that exact pool is dropped; a pool that was
        already replaced by another caller is left alone.
        """

        current = self._pools.get(database_id)
        if pool is not None and current is not pool:
            return
        self._pools.pop(database_id, None)
        self._states.pop(database_id, None)
        if current is None:
            return
        LOG.info("Discarding SQL pool for %s", database_id)
        self._terminate_quiet(database_id, current)

    async def close(self) -> None:
        """Close every pool; errors are logged per pool."""

        pools = tuple(self._pools.items())
        self._pools.clear()
        self._states.clear()
        for database_id, pool in pools:
            try:
                await pool.close()
            except Exception as exc:
                LOG.warning("Failed to close SQL pool for %s: %s", database_id, exc)
            else:
                LOG.info("Closed SQL pool for %s", database_id)

    async def _ensure(self, database_id: str) -> ConnectionPool:
        pool = self._pools.get(database_id)
        if pool is None:
            return await self._create(database_id)
        if pool.connected:
            return pool
        LOG.warning("SQL pool disconnected for %s, reconnecting...", database_id)
        try:
            await pool.connect()
        except Exception as exc:
            LOG.error("Failed to reconnect SQL pool for %s: %s", database_id, exc)
            self._pools.pop(database_id, None)
            self._terminate_quiet(database_id, pool)
            return await self._create(database_id)
        self._states[database_id] = PoolState.CONNECTED
        return pool

    async def _create(self, database_id: str) -> ConnectionPool:
        config = self._registry.require(database_id)
        LOG.info("Initializing SQL connection pool for: %s...", database_id)
        self._states[database_id] = PoolState.CONNECTING
        pool = self._factory(database_id, config)
        try:
            await pool.connect()
        except Exception as exc:
            self._states[database_id] = PoolState.FAILED
            LOG.error("Failed to initialize SQL connection pool for %s: %s", database_id, exc)
            raise PoolConnectionError(database_id, exc) from exc
        pool.subscribe(self._on_pool_error)
        self._pools[database_id] = pool
        self._states[database_id] = PoolState.CONNECTED
        LOG.info(
            "SQL connection pool initialized successfully for %s (%s/%s)",
            database_id,
            config.server,
            config.database,
        )
        return pool

    @staticmethod
    def _on_pool_error(database_id: str, exc: BaseException) -> None:
        LOG.error("SQL pool error (%s): %s", database_id, exc)

    @staticmethod
    def _terminate_quiet(database_id: str, pool: ConnectionPool) -> None:
        try:
            pool.terminate()
        except Exception as exc:  # pragma: no cover - best effort cleanup
            LOG.debug("Ignoring error while terminating pool for %s: %s", database_id, exc)


__all__ = ["PoolManager", "PoolState"]
