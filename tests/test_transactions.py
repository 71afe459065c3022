"""Tests for the atomic transaction executor."""

from __future__ import annotations

import logging

import pytest

from fakes import FakeDriverError, FakePoolFactory, make_config
from sqlbroker.errors import ConfigurationError, TransactionError
from sqlbroker.models import Statement
from sqlbroker.pools import PoolManager
from sqlbroker.registry import DatabaseRegistry
from sqlbroker.transactions import TransactionExecutor, normalize_statements


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _executor(factory: FakePoolFactory) -> TransactionExecutor:
    registry = DatabaseRegistry(make_config())
    registry.register("sales", {"user": "u", "password": "p", "server": "db1", "database": "sales"})
    return TransactionExecutor(registry, PoolManager(registry, factory))


@pytest.mark.anyio
async def test_statements_run_in_order_and_commit_once() -> None:
    factory = FakePoolFactory()
    factory.scripts["sales"] = [[], [], [{"total": 2}]]
    executor = _executor(factory)

    results = await executor.execute(
        [
            {"sql": "INSERT INTO a VALUES (@v)", "parameters": {"v": 1}},
            ("INSERT INTO b VALUES (@v)", {"v": 2}),
            Statement("SELECT COUNT(*) AS total FROM a"),
        ],
        "sales",
    )

    pool = factory.created[0]
    assert [sql for sql, _ in pool.queries] == [
        "INSERT INTO a VALUES (@v)",
        "INSERT INTO b VALUES (@v)",
        "SELECT COUNT(*) AS total FROM a",
    ]
    assert pool.queries[1][1] == {"v": 2}
    assert [result.database_id for result in results] == ["sales"] * 3
    assert results[2].rows == ({"total": 2},)
    transaction = pool.transactions[0]
    assert transaction.began and transaction.committed and not transaction.rolled_back
    assert factory.visible["sales"] == [sql for sql, _ in pool.queries]


@pytest.mark.anyio
async def test_empty_batch_is_rejected() -> None:
    factory = FakePoolFactory()
    executor = _executor(factory)

    with pytest.raises(ConfigurationError):
        await executor.execute([], "sales")
    assert factory.created == []


@pytest.mark.anyio
async def test_failed_statement_rolls_back_earlier_work() -> None:
    factory = FakePoolFactory()
    factory.scripts["sales"] = [[], FakeDriverError("EREQUEST", "duplicate key in insertB")]
    executor = _executor(factory)

    with pytest.raises(TransactionError) as excinfo:
        await executor.execute(["INSERT INTO t VALUES ('a')", "INSERT INTO t VALUES ('b')"], "sales")

    assert excinfo.value.statement_index == 1
    assert "duplicate key in insertB" in str(excinfo.value)
    assert excinfo.value.rollback_error is None
    assert factory.created[0].transactions[0].rolled_back is True
    assert factory.visible.get("sales", []) == []


@pytest.mark.anyio
async def test_rollback_failure_does_not_mask_statement_error(caplog: pytest.LogCaptureFixture) -> None:
    factory = FakePoolFactory()
    factory.scripts["sales"] = [[], FakeDriverError("EREQUEST", "insertB failed")]
    factory.rollback_errors["sales"] = RuntimeError("rollback exploded")
    executor = _executor(factory)

    with caplog.at_level(logging.ERROR):
        with pytest.raises(TransactionError) as excinfo:
            await executor.execute(["INSERT A", "INSERT B"], "sales")

    assert isinstance(excinfo.value.__cause__, FakeDriverError)
    assert "insertB failed" in str(excinfo.value)
    assert "rollback exploded" not in str(excinfo.value)
    assert isinstance(excinfo.value.rollback_error, RuntimeError)
    assert "Failed to roll back transaction on sales: rollback exploded" in caplog.text
    assert factory.visible.get("sales", []) == []


@pytest.mark.anyio
async def test_transient_error_inside_transaction_is_not_retried() -> None:
    factory = FakePoolFactory()
    factory.scripts["sales"] = [FakeDriverError("ETIMEOUT")]
    executor = _executor(factory)

    with pytest.raises(TransactionError):
        await executor.execute(["UPDATE t SET x = 1", "UPDATE t SET y = 2"], "sales")

    pool = factory.created[0]
    assert len(pool.queries) == 1
    assert len(pool.transactions) == 1


def test_normalize_statements_rejects_missing_sql() -> None:
    with pytest.raises(ConfigurationError):
        normalize_statements([{"parameters": {"a": 1}}])
