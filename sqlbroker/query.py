"""Single-statement execution with a bounded retry policy."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping

from .errors import (
    POOL_DISCARD_KINDS,
    TerminalExecutionError,
    TransientConnectionError,
    classify_error,
)
from .models import QueryResult
from .pools import PoolManager
from .registry import DatabaseRegistry
from .sql import preview

LOG = logging.getLogger(__name__)

DEFAULT_RETRY_BUDGET = 3
RETRY_BACKOFF_SECONDS = 1.0

Sleeper = Callable[[float], Awaitable[Any]]


class QueryExecutor:
    """Runs one parameterized statement against a named database."""

    def __init__(
        self,
        registry: DatabaseRegistry,
        pools: PoolManager,
        *,
        backoff: float = RETRY_BACKOFF_SECONDS,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._registry = registry
        self._pools = pools
        self._backoff = backoff
        self._sleep = sleep

    async def execute(
        self,
        statement: str,
        parameters: Mapping[str, Any] | None = None,
        retry_budget: int = DEFAULT_RETRY_BUDGET,
        database_id: str | None = None,
    ) -> QueryResult:
        """Execute *statement*, retrying transient failures up to *retry_budget* times.

        The backoff between attempts is flat. Connection-closed and
        connection-reset failures also discard the pool so the next attempt
        starts from a freshly built one.
        """

        db_id = self._registry.resolve(database_id)
        params = dict(parameters or {})
        remaining = max(retry_budget, 0)
        attempt = 0
        while True:
            attempt += 1
            LOG.info("Executing SQL on %s: %s", db_id, preview(statement))
            pool = await self._pools.ensure_connected(db_id)
            started = time.perf_counter()
            try:
                rows = await pool.query(statement, params)
            except Exception as exc:
                LOG.error("SQL execution failed on %s: %s", db_id, exc)
                kind = classify_error(exc)
                if kind is None:
                    raise TerminalExecutionError(db_id, exc, attempts=attempt) from exc
                if remaining <= 0:
                    raise TransientConnectionError(db_id, exc, kind, attempts=attempt) from exc
                LOG.info("Retrying SQL execution on %s (%d attempts left)...", db_id, remaining)
                await self._sleep(self._backoff)
                if kind in POOL_DISCARD_KINDS:
                    self._pools.discard(db_id, pool)
                remaining -= 1
                continue
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            LOG.info(
                "SQL executed successfully on %s in %dms, returned %d rows",
                db_id,
                elapsed_ms,
                len(rows),
            )
            return QueryResult(
                rows=tuple(rows),
                execution_time_ms=elapsed_ms,
                database_id=db_id,
                retries=attempt - 1,
            )


__all__ = ["DEFAULT_RETRY_BUDGET", "QueryExecutor", "RETRY_BACKOFF_SECONDS"]
