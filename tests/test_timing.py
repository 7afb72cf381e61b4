import asyncio
import time
from unittest.mock import MagicMock

import pytest

from platform_health.utils.timing import Stopwatch, measure_time


def test_stopwatch_context():
    with Stopwatch() as sw:
        time.sleep(0.01)

    assert sw.elapsed_ms >= 10
    assert sw.end_time >= sw.start_time
    frozen = sw.elapsed
    time.sleep(0.01)
    assert sw.elapsed == frozen


def test_stopwatch_unstarted():
    sw = Stopwatch()
    assert sw.elapsed == 0.0
    sw.stop()
    assert sw.start_time is not None
    assert sw.elapsed_ms >= 0


def test_sync_measure_collects_metric():
    collected = []

    @measure_time(metric_collector=lambda name, elapsed: collected.append((name, elapsed)), tag="sync")
    def double(x):
        return x * 2

    assert double(4) == 8
    assert collected[0][0].endswith("double")
    assert collected[0][1] >= 0


async def test_async_measure_warns_over_threshold():
    logger = MagicMock()

    @measure_time(logger=logger, threshold_warning=0.001, tag="async")
    async def slow(x):
        await asyncio.sleep(0.01)
        return x * 3

    assert await slow(2) == 6
    logger.warning.assert_called_once()
    assert "[async]" in logger.warning.call_args.args[0]


def test_measure_records_on_error():
    logger = MagicMock()

    @measure_time(logger=logger, level="info")
    def broken():
        raise ValueError("nope")

    with pytest.raises(ValueError):
        broken()
    logger.info.assert_called_once()


def test_broken_collector_is_logged():
    logger = MagicMock()

    def collector(name, elapsed):
        raise RuntimeError("collector down")

    @measure_time(logger=logger, metric_collector=collector)
    def ok():
        return 1

    assert ok() == 1
    assert "Metric collector failed" in logger.warning.call_args.args[0]
