import asyncio
from unittest.mock import AsyncMock

from platform_health.health.manager import HealthAggregator
from platform_health.health.poller import Poller
from platform_health.schemas.health import SnapshotMode

from .conftest import StaticProbe


def _aggregator(cache, *probes):
    return HealthAggregator(probes=probes or [StaticProbe("connection")], cache=cache)


async def test_polls_both_modes_and_stops(snapshot_cache):
    connection, schemas = StaticProbe("connection"), StaticProbe("schemas")
    aggregator = _aggregator(snapshot_cache, connection, schemas)
    poller = Poller(aggregator, quick_interval=0.01, full_interval=0.01)

    poller.start()
    await asyncio.sleep(0.05)
    assert poller.running
    await poller.stop()

    assert not poller.running
    assert snapshot_cache.get(SnapshotMode.QUICK) is not None
    assert snapshot_cache.get(SnapshotMode.FULL) is not None
    # the fake clock never moves, so later polls are cache hits
    assert schemas.calls == 1


async def test_start_twice_is_a_noop(snapshot_cache):
    poller = Poller(_aggregator(snapshot_cache), quick_interval=10, full_interval=10)
    poller.start()
    tasks = dict(poller._tasks)
    poller.start()

    assert poller._tasks == tasks
    await poller.stop()


async def test_refresh_forces_full_snapshot(snapshot_cache):
    probe = StaticProbe("connection")
    poller = Poller(_aggregator(snapshot_cache, probe))

    first = await poller.refresh()
    second = await poller.refresh()

    assert first.mode == SnapshotMode.FULL
    assert second is not first
    assert probe.calls == 2


async def test_poll_failure_keeps_loop_alive(snapshot_cache):
    aggregator = _aggregator(snapshot_cache)
    aggregator.get_snapshot = AsyncMock(side_effect=RuntimeError("boom"))
    poller = Poller(aggregator, quick_interval=0.01, full_interval=0.01)

    assert await poller.poll_once(SnapshotMode.QUICK) is None

    poller.start()
    await asyncio.sleep(0.05)
    assert poller.running
    await poller.stop()
    assert aggregator.get_snapshot.await_count > 2
