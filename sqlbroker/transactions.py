"""Atomic execution of an ordered batch of statements."""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, Mapping, Sequence

from .errors import ConfigurationError, TransactionError
from .models import QueryResult, Statement
from .pools import PoolManager
from .registry import DatabaseRegistry

LOG = logging.getLogger(__name__)

StatementLike = Statement | Mapping[str, Any] | tuple[str, Mapping[str, Any] | None] | str


def normalize_statements(statements: Iterable[StatementLike] | None) -> list[Statement]:
    """Coerce mappings (``{"sql": ..., "parameters": ...}``), pairs and strings into ``Statement``."""

    normalized: list[Statement] = []
    for entry in statements or ():
        if isinstance(entry, Statement):
            normalized.append(entry)
        elif isinstance(entry, str):
            normalized.append(Statement(entry))
        elif isinstance(entry, Mapping):
            sql = entry.get("sql")
            if not isinstance(sql, str) or not sql.strip():
                raise ConfigurationError("Each transaction query requires a 'sql' string")
            normalized.append(Statement(sql, entry.get("parameters")))
        else:
            sql, parameters = entry
            normalized.append(Statement(sql, parameters))
    return normalized


class TransactionExecutor:
    """Runs statements in order inside one transaction, committing once."""

    def __init__(self, registry: DatabaseRegistry, pools: PoolManager) -> None:
        self._registry = registry
        self._pools = pools

    async def execute(
        self,
        statements: Sequence[StatementLike],
        database_id: str | None = None,
    ) -> list[QueryResult]:
        batch = normalize_statements(statements)
        if not batch:
            raise ConfigurationError("No queries provided for transaction")
        db_id = self._registry.resolve(database_id)
        LOG.info("Starting transaction on %s with %d queries", db_id, len(batch))
        pool = await self._pools.ensure_connected(db_id)
        transaction = pool.transaction()
        results: list[QueryResult] = []
        index: int | None = None
        try:
            await transaction.begin()
            LOG.info("Transaction started on %s", db_id)
            for index, statement in enumerate(batch):
                LOG.info("Executing transaction query %d/%d on %s", index + 1, len(batch), db_id)
                started = time.perf_counter()
                rows = await transaction.query(statement.sql, dict(statement.parameters or {}))
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                results.append(QueryResult(rows=tuple(rows), execution_time_ms=elapsed_ms, database_id=db_id))
            index = None
            await transaction.commit()
        except Exception as exc:
            LOG.error("Transaction failed on %s: %s", db_id, exc)
            rollback_error = await self._rollback(transaction, db_id)
            raise TransactionError(
                db_id,
                exc,
                statement_index=index,
                rollback_error=rollback_error,
            ) from exc
        LOG.info("Transaction committed successfully on %s", db_id)
        return results

    @staticmethod
    async def _rollback(transaction: Any, db_id: str) -> BaseException | None:
        try:
            await transaction.rollback()
        except Exception as exc:
            LOG.error("Failed to roll back transaction on %s: %s", db_id, exc)
            return exc
        LOG.info("Transaction rolled back on %s", db_id)
        return None


__all__ = ["StatementLike", "TransactionExecutor", "normalize_statements"]
