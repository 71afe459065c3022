"""Concurrent fan-out of one statement across many database targets."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from .errors import ConfigurationError
from .models import DispatchOutcome
from .query import QueryExecutor
from .registry import DatabaseRegistry

LOG = logging.getLogger(__name__)

DISPATCH_RETRY_BUDGET = 3


class MultiDatabaseDispatcher:
    """Runs a statement on several databases; one failure never affects the others."""

    def __init__(self, registry: DatabaseRegistry, executor: QueryExecutor) -> None:
        self._registry = registry
        self._executor = executor

    async def dispatch(
        self,
        statement: str,
        database_ids: Sequence[str],
        parameters: Mapping[str, Any] | None = None,
    ) -> list[DispatchOutcome]:
        """Return one outcome per id, ordered by settlement rather than input."""

        if not database_ids:
            raise ConfigurationError("No database IDs provided")
        for database_id in database_ids:
            self._registry.require(database_id)
        LOG.info("Executing query on %d databases: %s", len(database_ids), ", ".join(database_ids))
        outcomes: list[DispatchOutcome] = []

        async def _run(database_id: str) -> None:
            outcomes.append(await self._execute_one(statement, database_id, parameters))

        await asyncio.gather(*(_run(database_id) for database_id in database_ids))
        return outcomes

    async def _execute_one(
        self,
        statement: str,
        database_id: str,
        parameters: Mapping[str, Any] | None,
    ) -> DispatchOutcome:
        config = self._registry.require(database_id)
        try:
            result = await self._executor.execute(statement, parameters, DISPATCH_RETRY_BUDGET, database_id)
        except Exception as exc:
            LOG.error("Query failed on database %s: %s", database_id, exc)
            return DispatchOutcome(
                database_id=database_id,
                success=False,
                server=config.server,
                database=config.database,
                error=str(exc),
            )
        return DispatchOutcome(
            database_id=database_id,
            success=True,
            server=config.server,
            database=config.database,
            result=result,
        )


__all__ = ["DISPATCH_RETRY_BUDGET", "MultiDatabaseDispatcher"]
