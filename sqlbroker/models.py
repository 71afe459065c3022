"""Shared models used across the registry, pool manager and executors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

MASKED_PASSWORD = "********"

Row = Mapping[str, Any]


def _drop_none(data: Any, zero_is_unset: frozenset[str] = frozenset()) -> Any:
    """Let pydantic apply field defaults for keys explicitly set to ``None``.

    Keys in *zero_is_unset* also fall back to their default when set to ``0``.
    """

    if isinstance(data, Mapping):
        return {
            key: value
            for key, value in data.items()
            if value is not None and not (key in zero_is_unset and value == 0)
        }
    return data


class PoolOptions(BaseModel):
    """Connection pool bounds for one database target."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max: int = Field(default=10, ge=1)
    min: int = Field(default=0, ge=0)
    idle_timeout_ms: int = Field(default=30000, ge=0, alias="idleTimeoutMillis")

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        return _drop_none(data, frozenset({"max", "idleTimeoutMillis", "idle_timeout_ms"}))

    @model_validator(mode="after")
    def _check_bounds(self) -> PoolOptions:
        if self.min > self.max:
            raise ValueError(f"pool.min ({self.min}) must not exceed pool.max ({self.max})")
        return self


class ConnectionOptions(BaseModel):
    """Transport and timeout options for one database target."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    encrypt: bool = False
    trust_server_certificate: bool = Field(default=True, alias="trustServerCertificate")
    connection_timeout_ms: int = Field(default=15000, gt=0, alias="connectionTimeout")
    request_timeout_ms: int = Field(default=15000, gt=0, alias="requestTimeout")
    pool: PoolOptions = Field(default_factory=PoolOptions)

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        return _drop_none(
            data,
            frozenset({"connectionTimeout", "connection_timeout_ms", "requestTimeout", "request_timeout_ms"}),
        )


class DatabaseConfig(BaseModel):
    """Fully resolved connection configuration for one database id."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user: str
    password: SecretStr
    server: str
    database: str
    port: int = Field(default=1433, gt=0, lt=65536)
    options: ConnectionOptions = Field(default_factory=ConnectionOptions)

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        return _drop_none(data, frozenset({"port"}))

    @property
    def host(self) -> str:
        """Server name without a ``\\INSTANCE`` suffix."""

        return self.server.split("\\", 1)[0]

    @property
    def instance_name(self) -> str | None:
        if "\\" not in self.server:
            return None
        return self.server.split("\\", 1)[1] or None

    def masked(self) -> DatabaseConfig:
        """Return a copy whose password is replaced by a fixed placeholder."""

        return self.model_copy(update={"password": SecretStr(MASKED_PASSWORD)})


@dataclass(frozen=True, slots=True)
class Statement:
    """One parameterized statement inside a transaction batch."""

    sql: str
    parameters: Mapping[str, Any] | None = None


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Rows returned by one statement, stamped with timing and target."""

    rows: tuple[Row, ...]
    execution_time_ms: int
    database_id: str
    retries: int = 0

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    """Per-target outcome of a multi-database dispatch."""

    database_id: str
    success: bool
    server: str
    database: str
    result: QueryResult | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class DatabaseSummary:
    """Introspection row returned by ``Engine.list_databases``."""

    id: str
    server: str
    database: str
    user: str
    is_connected: bool


__all__ = [
    "ConnectionOptions",
    "DatabaseConfig",
    "DatabaseSummary",
    "DispatchOutcome",
    "MASKED_PASSWORD",
    "PoolOptions",
    "QueryResult",
    "Row",
    "Statement",
]
