"""Tests for the per-database pool lifecycle."""

from __future__ import annotations

import asyncio
import gc
import logging

import pytest

from fakes import FakePoolFactory, make_config
from sqlbroker.errors import ConfigurationError, PoolConnectionError
from sqlbroker.pools import PoolManager, PoolState
from sqlbroker.registry import DatabaseRegistry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _manager(factory: FakePoolFactory) -> PoolManager:
    registry = DatabaseRegistry(make_config())
    registry.register("sales", {"user": "u", "password": "p", "server": "db1", "database": "sales"})
    return PoolManager(registry, factory)


@pytest.mark.anyio
async def test_pool_is_created_lazily_and_reused() -> None:
    factory = FakePoolFactory()
    manager = _manager(factory)

    assert manager.state("sales") is PoolState.ABSENT
    first = await manager.ensure_connected("sales")
    second = await manager.ensure_connected("sales")

    assert first is second
    assert len(factory.created) == 1
    assert first.config.server == "db1"
    assert manager.state("sales") is PoolState.CONNECTED
    assert manager.is_connected("sales") is True


@pytest.mark.anyio
async def test_concurrent_callers_share_one_construction() -> None:
    factory = FakePoolFactory()
    factory.connect_delay = 0.01
    manager = _manager(factory)

    pools = await asyncio.gather(*(manager.ensure_connected("sales") for _ in range(5)))

    assert len(factory.created) == 1
    assert all(pool is pools[0] for pool in pools)


@pytest.mark.anyio
async def test_disconnected_pool_is_repaired_in_place() -> None:
    factory = FakePoolFactory()
    manager = _manager(factory)
    pool = await manager.ensure_connected("sales")
    pool.drop()

    assert manager.state("sales") is PoolState.DISCONNECTED
    repaired = await manager.ensure_connected("sales")

    assert repaired is pool
    assert pool.connect_calls == 2
    assert len(factory.created) == 1


@pytest.mark.anyio
async def test_failed_reconnect_replaces_pool(caplog: pytest.LogCaptureFixture) -> None:
    factory = FakePoolFactory()
    manager = _manager(factory)
    pool = await manager.ensure_connected("sales")
    pool.drop()
    factory.connect_errors["sales"] = [ConnectionResetError("still down")]

    with caplog.at_level(logging.ERROR):
        replacement = await manager.ensure_connected("sales")

    assert replacement is not pool
    assert pool.terminated is True
    assert len(factory.created) == 2
    assert manager.get("sales") is replacement
    assert "Failed to reconnect SQL pool for sales" in caplog.text


@pytest.mark.anyio
async def test_initial_connect_failure_propagates_and_marks_failed() -> None:
    factory = FakePoolFactory()
    factory.connect_errors["sales"] = [OSError("no route to host")]
    manager = _manager(factory)

    with pytest.raises(PoolConnectionError) as excinfo:
        await manager.ensure_connected("sales")

    assert excinfo.value.database_id == "sales"
    assert isinstance(excinfo.value.__cause__, OSError)
    assert manager.state("sales") is PoolState.FAILED
    assert manager.get("sales") is None

    # A later call starts over with a fresh pool.
    pool = await manager.ensure_connected("sales")
    assert pool.connected is True
    assert len(factory.created) == 2


@pytest.mark.anyio
async def test_unknown_database_id_is_a_configuration_error() -> None:
    manager = _manager(FakePoolFactory())

    with pytest.raises(ConfigurationError):
        await manager.ensure_connected("nope")


@pytest.mark.anyio
async def test_pool_errors_are_logged_without_teardown(caplog: pytest.LogCaptureFixture) -> None:
    factory = FakePoolFactory()
    manager = _manager(factory)
    pool = await manager.ensure_connected("sales")

    with caplog.at_level(logging.ERROR):
        pool.emit(ConnectionResetError("socket hang up"))

    assert "SQL pool error (sales): socket hang up" in caplog.text
    assert manager.get("sales") is pool
    assert pool.terminated is False


@pytest.mark.anyio
async def test_discard_drops_pool_and_next_use_rebuilds() -> None:
    factory = FakePoolFactory()
    manager = _manager(factory)
    pool = await manager.ensure_connected("sales")

    manager.discard("sales")

    assert pool.terminated is True
    assert manager.state("sales") is PoolState.ABSENT
    rebuilt = await manager.ensure_connected("sales")
    assert rebuilt is not pool


@pytest.mark.anyio
async def test_discard_leaves_a_replacement_pool_alone() -> None:
    factory = FakePoolFactory()
    manager = _manager(factory)
    stale = await manager.ensure_connected("sales")
    manager.discard("sales", stale)
    fresh = await manager.ensure_connected("sales")

    manager.discard("sales", stale)

    assert manager.get("sales") is fresh
    assert fresh.terminated is False
    assert manager.state("sales") is PoolState.CONNECTED


@pytest.mark.anyio
async def test_failed_construction_with_cancelled_callers_is_not_reported_unretrieved(
    caplog: pytest.LogCaptureFixture,
) -> None:
    factory = FakePoolFactory()
    factory.connect_delay = 0.02
    factory.connect_errors["sales"] = [OSError("no route to host")]
    manager = _manager(factory)

    with caplog.at_level(logging.ERROR, logger="asyncio"):
        caller = asyncio.ensure_future(manager.ensure_connected("sales"))
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller
        await asyncio.sleep(0.05)
        gc.collect()

    assert "never retrieved" not in caplog.text
    assert manager.state("sales") is PoolState.FAILED
    pool = await manager.ensure_connected("sales")
    assert pool.connected is True


@pytest.mark.anyio
async def test_close_closes_every_pool() -> None:
    factory = FakePoolFactory()
    manager = _manager(factory)
    await manager.ensure_connected("sales")
    await manager.ensure_connected("default")

    await manager.close()

    assert all(pool.closed for pool in factory.created)
    assert manager.is_connected("sales") is False
