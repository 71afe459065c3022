"""Multi-database connection and query-execution engine."""

from __future__ import annotations

__version__ = "0.1.0"

from .engine import Engine
from .errors import (
    ConfigurationError,
    PoolConnectionError,
    SqlBrokerError,
    TerminalExecutionError,
    TransactionError,
    TransientConnectionError,
)
from .models import DatabaseConfig, DatabaseSummary, DispatchOutcome, QueryResult, Statement

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "DatabaseSummary",
    "DispatchOutcome",
    "Engine",
    "PoolConnectionError",
    "QueryResult",
    "SqlBrokerError",
    "Statement",
    "TerminalExecutionError",
    "TransactionError",
    "TransientConnectionError",
    "__version__",
]
