"""Error taxonomy and transient-failure classification."""

from __future__ import annotations

import asyncio
from enum import Enum

import asyncpg


class TransientKind(str, Enum):
    """Failure kinds expected to clear up on retry."""

    TIMEOUT = "ETIMEOUT"
    CONNECTION_CLOSED = "ECONNCLOSED"
    CONNECTION_RESET = "ECONNRESET"
    SOCKET = "ESOCKET"


# Only these kinds force the pool to be rebuilt before the next attempt.
POOL_DISCARD_KINDS = frozenset({TransientKind.CONNECTION_CLOSED, TransientKind.CONNECTION_RESET})


class SqlBrokerError(RuntimeError):
    """Base class for every error raised by the engine."""


class ConfigurationError(SqlBrokerError, ValueError):
    """Raised for invalid registrations, unknown database ids and empty requests."""


class PoolConnectionError(SqlBrokerError):
    """Raised when a pool cannot be opened for a database id."""

    def __init__(self, database_id: str, cause: BaseException) -> None:
        super().__init__(f"Failed to connect pool for '{database_id}': {cause}")
        self.database_id = database_id
        self.cause = cause


class ExecutionError(SqlBrokerError):
    """A statement failed against a database target."""

    def __init__(self, database_id: str, cause: BaseException, *, attempts: int = 1) -> None:
        super().__init__(self._describe(database_id, cause, attempts))
        self.database_id = database_id
        self.cause = cause
        self.attempts = attempts

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)

    @staticmethod
    def _describe(database_id: str, cause: BaseException, attempts: int) -> str:
        suffix = "attempt" if attempts == 1 else "attempts"
        return f"SQL execution failed on '{database_id}' after {attempts} {suffix}: {cause}"


class TransientConnectionError(ExecutionError):
    """A transient failure that outlived its retry budget."""

    def __init__(
        self,
        database_id: str,
        cause: BaseException,
        kind: TransientKind,
        *,
        attempts: int = 1,
    ) -> None:
        super().__init__(database_id, cause, attempts=attempts)
        self.kind = kind


class TerminalExecutionError(ExecutionError):
    """A failure outside the transient set; never retried."""


class TransactionError(ExecutionError):
    """A statement inside a transaction failed and the transaction was abandoned."""

    def __init__(
        self,
        database_id: str,
        cause: BaseException,
        *,
        statement_index: int | None = None,
        rollback_error: BaseException | None = None,
    ) -> None:
        super().__init__(database_id, cause)
        self.statement_index = statement_index
        self.rollback_error = rollback_error

    @staticmethod
    def _describe(database_id: str, cause: BaseException, attempts: int) -> str:
        return f"Transaction failed on '{database_id}': {cause}"


def classify_error(exc: BaseException) -> TransientKind | None:
    """Return the transient kind of *exc*, or ``None`` when it is terminal."""

    code = getattr(exc, "code", None)
    if isinstance(code, str):
        try:
            return TransientKind(code)
        except ValueError:
            pass
    # TimeoutError and ConnectionResetError are OSError subclasses; check them first.
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return TransientKind.TIMEOUT
    if isinstance(exc, asyncpg.exceptions.ConnectionDoesNotExistError):
        return TransientKind.CONNECTION_CLOSED
    if isinstance(exc, asyncpg.exceptions.InterfaceError) and "closed" in str(exc).lower():
        return TransientKind.CONNECTION_CLOSED
    if isinstance(exc, (ConnectionResetError, asyncpg.exceptions.ConnectionFailureError)):
        return TransientKind.CONNECTION_RESET
    if isinstance(exc, (OSError, asyncpg.exceptions.PostgresConnectionError)):
        return TransientKind.SOCKET
    return None


def format_sql_error(error: BaseException | None) -> str:
    """Render a driver error for human-readable output."""

    if error is None:
        return "Unknown error"
    number = getattr(error, "number", None) or getattr(error, "sqlstate", None)
    message = str(error) or "Unknown SQL error"
    if number:
        return f"SQL Error {number}: {message}"
    return message


__all__ = [
    "ConfigurationError",
    "ExecutionError",
    "POOL_DISCARD_KINDS",
    "PoolConnectionError",
    "SqlBrokerError",
    "TerminalExecutionError",
    "TransactionError",
    "TransientConnectionError",
    "TransientKind",
    "classify_error",
    "format_sql_error",
]
