"""Engine facade consumed by protocol and CLI adapters."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Mapping, Sequence

from .config import DefaultDatabaseSettings, multi_database_config_present
from .connections import PoolFactory
from .dispatch import MultiDatabaseDispatcher
from .errors import format_sql_error
from .models import DatabaseConfig, DatabaseSummary, DispatchOutcome, QueryResult
from .pools import PoolManager
from .query import DEFAULT_RETRY_BUDGET, RETRY_BACKOFF_SECONDS, QueryExecutor, Sleeper
from .registry import DEFAULT_DATABASE_ID, DatabaseRegistry
from .sql import sanitize_identifier
from .transactions import StatementLike, TransactionExecutor

LOG = logging.getLogger(__name__)

_TABLE_EXISTS_QUERY = """
    SELECT COUNT(*) AS table_count
    FROM information_schema.tables
    WHERE table_name = @table_name
"""


class Engine:
    """Wires the registry, pool manager and executors behind one interface."""

    def __init__(
        self,
        default: DatabaseConfig | None = None,
        *,
        pool_factory: PoolFactory | None = None,
        backoff: float = RETRY_BACKOFF_SECONDS,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.registry = DatabaseRegistry(default or DefaultDatabaseSettings().to_config())
        self.pools = PoolManager(self.registry, pool_factory)
        self.executor = QueryExecutor(self.registry, self.pools, backoff=backoff, sleep=sleep)
        self.transactions = TransactionExecutor(self.registry, self.pools)
        self.dispatcher = MultiDatabaseDispatcher(self.registry, self.executor)

    async def __aenter__(self) -> Engine:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # Registration and introspection

    def register_database(self, database_id: str, config: DatabaseConfig | Mapping[str, Any]) -> bool:
        return self.registry.register(database_id, config)

    def list_databases(self) -> list[DatabaseSummary]:
        return self.registry.summaries(self.pools.is_connected)

    def get_current_database_id(self) -> str:
        return self.registry.current_id

    def switch_database(self, database_id: str) -> bool:
        return self.registry.set_current(database_id)

    def get_config(self, database_id: str | None = None, mask_password: bool = False) -> DatabaseConfig:
        return self.registry.get(database_id, mask_password=mask_password)

    # Execution

    async def execute_query(
        self,
        statement: str,
        parameters: Mapping[str, Any] | None = None,
        retry_budget: int = DEFAULT_RETRY_BUDGET,
        database_id: str | None = None,
    ) -> QueryResult:
        return await self.executor.execute(statement, parameters, retry_budget, database_id)

    async def execute_transaction(
        self,
        statements: Sequence[StatementLike],
        database_id: str | None = None,
    ) -> list[QueryResult]:
        return await self.transactions.execute(statements, database_id)

    async def execute_on_multiple_databases(
        self,
        statement: str,
        database_ids: Sequence[str],
        parameters: Mapping[str, Any] | None = None,
    ) -> list[DispatchOutcome]:
        return await self.dispatcher.dispatch(statement, database_ids, parameters)

    # Utilities

    async def table_exists(self, table_name: str, database_id: str | None = None) -> bool:
        """True when *table_name* exists; any failure reads as ``False``."""

        try:
            result = await self.execute_query(
                _TABLE_EXISTS_QUERY,
                {"table_name": table_name},
                DEFAULT_RETRY_BUDGET,
                database_id,
            )
            return bool(result.rows) and int(result.rows[0]["table_count"]) > 0
        except Exception as exc:
            LOG.error("Error checking if table exists: %s", exc)
            return False

    sanitize_identifier = staticmethod(sanitize_identifier)
    format_sql_error = staticmethod(format_sql_error)

    # Lifecycle

    async def bootstrap(
        self,
        settings: DefaultDatabaseSettings | None = None,
        config_file: Path | None = None,
    ) -> bool:
        """Eagerly connect the ``default`` database in single-database mode.

        With a multi-database config file present nothing is connected; the
        caller registers those targets explicitly. Connection failures are
        logged, never raised. Returns True when the default pool came up.
        """

        if multi_database_config_present(config_file):
            LOG.info("Multi-database configuration detected, skipping automatic default database initialization")
            return False
        settings = settings or DefaultDatabaseSettings()
        if not settings.configured:
            return False
        LOG.info("Single database mode detected, initializing default database pool...")
        try:
            await self.pools.ensure_connected(DEFAULT_DATABASE_ID)
        except Exception as exc:
            LOG.error("Failed to initialize default database pool: %s", exc)
            return False
        return True

    async def close(self) -> None:
        await self.pools.close()


__all__ = ["Engine"]
