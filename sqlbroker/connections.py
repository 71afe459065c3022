"""Driver adapters: pools and transactions backed by asyncpg."""

from __future__ import annotations

import logging
import ssl
from typing import Any, Callable, Mapping, Protocol, Sequence, runtime_checkable

import asyncpg

from .models import DatabaseConfig, Row
from .sql import bind_named_parameters

LOG = logging.getLogger(__name__)

PoolErrorListener = Callable[[str, BaseException], None]

_CONNECTION_ERRORS = (OSError, asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.InterfaceError)


@runtime_checkable
class PoolTransaction(Protocol):
    """Transaction context bound to a single pooled connection."""

    async def begin(self) -> None: ...

    async def query(self, statement: str, parameters: Mapping[str, Any] | None = None) -> Sequence[Row]: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


@runtime_checkable
class ConnectionPool(Protocol):
    """Protocol implemented by driver pools."""

    @property
    def connected(self) -> bool: ...

    async def connect(self) -> None:
        """Open the pool, or reopen it in place after a disconnect."""

    async def query(self, statement: str, parameters: Mapping[str, Any] | None = None) -> Sequence[Row]: ...

    def transaction(self) -> PoolTransaction: ...

    async def close(self) -> None: ...

    def terminate(self) -> None:
        """Drop every connection immediately without waiting on callers."""

    def subscribe(self, listener: PoolErrorListener) -> Callable[[], None]:
        """Subscribe to asynchronous pool errors; returns an unsubscribe handle."""


PoolFactory = Callable[[str, DatabaseConfig], ConnectionPool]


class AsyncpgPool:
    """``ConnectionPool`` implementation wrapping ``asyncpg.Pool``."""

    def __init__(self, database_id: str, config: DatabaseConfig) -> None:
        self._database_id = database_id
        self._config = config
        self._pool: asyncpg.Pool | None = None
        self._listeners: set[PoolErrorListener] = set()

    @property
    def connected(self) -> bool:
        return self._pool is not None and not self._pool.is_closing()

    async def connect(self) -> None:
        if self._pool is not None:
            self._pool.terminate()
            self._pool = None
        self._pool = await asyncpg.create_pool(**self._pool_kwargs())

    async def query(self, statement: str, parameters: Mapping[str, Any] | None = None) -> Sequence[Row]:
        pool = self._require_pool()
        sql, args = bind_named_parameters(statement, parameters)
        try:
            async with pool.acquire() as conn:
                records = await conn.fetch(sql, *args)
        except _CONNECTION_ERRORS as exc:
            self._emit(exc)
            raise
        return [dict(record) for record in records]

    def transaction(self) -> AsyncpgTransaction:
        return AsyncpgTransaction(self._require_pool())

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()

    def terminate(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            pool.terminate()

    def subscribe(self, listener: PoolErrorListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _emit(self, exc: BaseException) -> None:
        for listener in tuple(self._listeners):
            listener(self._database_id, exc)

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise asyncpg.exceptions.InterfaceError("pool is closed")
        return self._pool

    def _pool_kwargs(self) -> dict[str, object]:
        config = self._config
        options = config.options
        if config.instance_name:
            LOG.debug("Ignoring instance name %r for %s", config.instance_name, self._database_id)
        return {
            "host": config.host,
            "port": config.port,
            "user": config.user,
            "password": config.password.get_secret_value(),
            "database": config.database,
            "min_size": options.pool.min,
            "max_size": options.pool.max,
            "max_inactive_connection_lifetime": options.pool.idle_timeout_ms / 1000,
            "timeout": options.connection_timeout_ms / 1000,
            "command_timeout": options.request_timeout_ms / 1000,
            "ssl": _ssl_mode(config),
        }


class AsyncpgTransaction:
    """Transaction pinned to one connection acquired from an ``asyncpg.Pool``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool
        self._conn: asyncpg.Connection | None = None
        self._transaction: Any = None

    async def begin(self) -> None:
        self._conn = await self._pool.acquire()
        try:
            self._transaction = self._conn.transaction()
            await self._transaction.start()
        except Exception:
            await self._release()
            raise

    async def query(self, statement: str, parameters: Mapping[str, Any] | None = None) -> Sequence[Row]:
        if self._conn is None:
            raise asyncpg.exceptions.InterfaceError("transaction has not been started")
        sql, args = bind_named_parameters(statement, parameters)
        records = await self._conn.fetch(sql, *args)
        return [dict(record) for record in records]

    async def commit(self) -> None:
        try:
            await self._transaction.commit()
        finally:
            await self._release()

    async def rollback(self) -> None:
        try:
            if self._transaction is not None:
                await self._transaction.rollback()
        finally:
            await self._release()

    async def _release(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await self._pool.release(conn)


def create_asyncpg_pool(database_id: str, config: DatabaseConfig) -> AsyncpgPool:
    """Default ``PoolFactory``."""

    return AsyncpgPool(database_id, config)


def _ssl_mode(config: DatabaseConfig) -> ssl.SSLContext | bool:
    options = config.options
    if not options.encrypt:
        return False
    context = ssl.create_default_context()
    if options.trust_server_certificate:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


__all__ = [
    "AsyncpgPool",
    "AsyncpgTransaction",
    "ConnectionPool",
    "PoolErrorListener",
    "PoolFactory",
    "PoolTransaction",
    "create_asyncpg_pool",
]
