import asyncio
import math
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

import loguru._logger

from ..caching.snapshot_cache import SnapshotCache
from ..exceptions import ProbeRegistrationError, RequestValidationError
from ..metric.otel import EngineMetrics
from ..schemas.health import (
    ComponentHealth,
    HealthSnapshot,
    HealthSummary,
    SnapshotMode,
    Status,
    utcnow,
)
from ..utils.log_common import build_logger
from ..utils.timing import Stopwatch, measure_time
from .base import ProbeBase, failed_component, timed_out_component

STATUS_SCORES = {
    Status.HEALTHY: 100,
    Status.WARNING: 60,
    Status.CRITICAL: 20,
}
INDETERMINATE_SCORE = 50
QUICK_PROBES = ("connection", "cache")
DEFAULT_TIMEOUTS = {SnapshotMode.QUICK: 5.0, SnapshotMode.FULL: 10.0}


def component_score(component: ComponentHealth) -> int:
    if component.indeterminate:
        return INDETERMINATE_SCORE
    return STATUS_SCORES[component.status]


def component_health_score(component: ComponentHealth) -> int:
    """
    0-100 score for a single component, used by the component lookup.

    Starts at 100 and deducts per issue (30 critical, 10 warning), for slow
    responses, for a high error rate and for a low cache hit rate.
    """
    score = 100
    for issue in component.issues:
        score -= 30 if issue.status == Status.CRITICAL else 10

    perf = component.performance
    if perf.average_response_time_ms > 3000:
        score -= 20
    elif perf.average_response_time_ms > 1000:
        score -= 10

    if perf.error_rate > 0.1:
        score -= 25
    elif perf.error_rate > 0.05:
        score -= 15

    if perf.cache_hit_rate is not None:
        if perf.cache_hit_rate < 0.5:
            score -= 15
        elif perf.cache_hit_rate < 0.7:
            score -= 8
    return max(0, score)


def compute_score(components: Sequence[ComponentHealth]) -> int:
    """Mean of the component scores rounded half-up; 100 when there are none."""
    if not components:
        return 100
    mean = sum(component_score(c) for c in components) / len(components)
    return int(math.floor(mean + 0.5))


def summarize(components: Sequence[ComponentHealth]) -> HealthSummary:
    critical = sorted(c.component_name for c in components if c.status == Status.CRITICAL)
    degraded = [c for c in components if c.status == Status.WARNING]
    critical_issues = sum(
        1 for c in components for i in c.issues if i.status == Status.CRITICAL
    )
    warning_issues = sum(
        1 for c in components for i in c.issues if i.status == Status.WARNING
    )

    if critical:
        status = Status.CRITICAL
        message = f"Critical failure in: {', '.join(critical)}"
    elif degraded:
        status = Status.WARNING
        n = len(degraded)
        message = f"{n} component{'s' if n != 1 else ''} degraded"
    else:
        status = Status.HEALTHY
        message = "All systems operational"

    return HealthSummary(
        status=status,
        message=message,
        issue_count=critical_issues + warning_issues,
        critical_issues=critical_issues,
        warning_issues=warning_issues,
    )


def build_snapshot(
    mode: Union[SnapshotMode, str],
    components: Iterable[ComponentHealth],
    timestamp: Optional[datetime] = None,
) -> HealthSnapshot:
    """Assemble a snapshot; score and summary are always recomputed from ``components``."""
    ordered = sorted(components, key=lambda c: c.component_name)
    return HealthSnapshot(
        timestamp=timestamp or utcnow(),
        mode=SnapshotMode(mode),
        components=ordered,
        summary=summarize(ordered),
        score=compute_score(ordered),
    )


class _Flight:
    """One in-flight aggregation shared by every caller of the same mode."""

    __slots__ = ("task", "waiters")

    def __init__(self, task: asyncio.Task):
        self.task = task
        self.waiters = 0


class HealthAggregator:
    """
    Fans out to the registered probes and merges their results into snapshots.

    - ``quick`` runs the probes named in ``quick_probes``, ``full`` runs all.
    - Snapshots are cached per mode; ``force=True`` bypasses the cache.
    - Concurrent callers of one mode share a single in-flight computation.
      A caller that is cancelled leaves the computation running for the
      others; it is cancelled only when no caller is left waiting.
    - Probes run concurrently under ``max_concurrency`` and a per-mode
      deadline. Probes still pending at the deadline are reported as
      critical and indeterminate.

    Usage:
        ```python
        aggregator = HealthAggregator(
            probes=[ConnectionProbe(client), CacheProbe(redis_client)],
            cache=SnapshotCache(ttl={SnapshotMode.QUICK: 30, SnapshotMode.FULL: 60}),
        )
        snapshot = await aggregator.get_snapshot("quick")
        ```
    """

    def __init__(
        self,
        probes: Iterable[ProbeBase],
        cache: SnapshotCache,
        quick_probes: Sequence[str] = QUICK_PROBES,
        timeouts: Optional[Mapping[SnapshotMode, float]] = None,
        max_concurrency: int = 8,
        metrics: Optional[EngineMetrics] = None,
        logger: Optional[loguru._logger.Logger] = None,
    ):
        """
        Initialize HealthAggregator.

        Args:
            probes: Probe instances; names must be unique.
            cache: Snapshot cache shared by every caller.
            quick_probes: Names of the probes run in quick mode.
            timeouts: Aggregation deadline in seconds per mode.
            max_concurrency: Maximum number of probes running at once.
            metrics: Optional OpenTelemetry instruments.
            logger: Logger instance for structured logging.

        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.cache = cache
        self.quick_probes = tuple(quick_probes)
        self.timeouts: Dict[SnapshotMode, float] = dict(DEFAULT_TIMEOUTS)
        self.timeouts.update(timeouts or {})
        self.max_concurrency = max_concurrency
        self.metrics = metrics
        self.logger = logger or build_logger("aggregator")
        self._probes: Dict[str, ProbeBase] = {}
        self._inflight: Dict[SnapshotMode, _Flight] = {}
        for probe in probes:
            self.register(probe)

    def register(self, probe: ProbeBase) -> None:
        name = getattr(probe, "name", None)
        if not name:
            raise ProbeRegistrationError(f"probe {probe!r} has no name")
        if name in self._probes:
            raise ProbeRegistrationError(f"a probe named '{name}' is already registered")
        self._probes[name] = probe

    @property
    def probe_names(self) -> List[str]:
        return list(self._probes)

    def get_probe(self, name: str) -> Optional[ProbeBase]:
        return self._probes.get(name)

    def probes_for(self, mode: Union[SnapshotMode, str]) -> List[ProbeBase]:
        if self._coerce_mode(mode) == SnapshotMode.FULL:
            return list(self._probes.values())
        return [p for name, p in self._probes.items() if name in self.quick_probes]

    async def get_snapshot(
        self, mode: Union[SnapshotMode, str] = SnapshotMode.FULL, force: bool = False
    ) -> HealthSnapshot:
        """
        Return a snapshot for ``mode``, from cache when fresh unless ``force``.

        Raises:
            RequestValidationError: If ``mode`` is not quick or full

        """
        mode = self._coerce_mode(mode)
        if not force:
            cached = self._read_cache(mode)
            if cached is not None:
                return cached
        return await self._join(mode)

    def last_snapshot(self, mode: Union[SnapshotMode, str]) -> Optional[HealthSnapshot]:
        """Cached snapshot for ``mode`` if still fresh; never runs probes."""
        return self._read_cache(self._coerce_mode(mode))

    def invalidate(self, mode: Optional[Union[SnapshotMode, str]] = None) -> None:
        if mode is None:
            self.cache.clear()
        else:
            self.cache.invalidate(self._coerce_mode(mode))

    async def _join(self, mode: SnapshotMode) -> HealthSnapshot:
        flight = self._inflight.get(mode)
        if flight is None or flight.task.done():
            flight = _Flight(asyncio.create_task(self.run_checks(mode)))
            self._inflight[mode] = flight
            flight.task.add_done_callback(
                lambda _task, m=mode, f=flight: self._finish_flight(m, f)
            )
        else:
            self.logger.debug(f"[{mode.value}] joining in-flight aggregation")

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                self.logger.info(f"[{mode.value}] every caller cancelled, abandoning aggregation")
                # later callers must start a fresh run, not join one being torn down
                self._finish_flight(mode, flight)
                flight.task.cancel()

    def _finish_flight(self, mode: SnapshotMode, flight: _Flight) -> None:
        if self._inflight.get(mode) is flight:
            del self._inflight[mode]

    @measure_time(tag="aggregate", threshold_warning=5.0)
    async def run_checks(self, mode: Union[SnapshotMode, str]) -> HealthSnapshot:
        """Run the probes for ``mode`` once, bypassing the cache, and update the cache."""
        mode = self._coerce_mode(mode)
        probes = self.probes_for(mode)
        deadline = self.timeouts[mode]
        semaphore = asyncio.Semaphore(self.max_concurrency)
        sw = Stopwatch().start()

        async def _bounded(probe: ProbeBase) -> ComponentHealth:
            async with semaphore:
                return await probe.probe()

        tasks = {asyncio.create_task(_bounded(p)): p for p in probes}
        pending = set()
        try:
            if tasks:
                _, pending = await asyncio.wait(tasks, timeout=deadline)
        finally:
            still_running = [t for t in tasks if not t.done()]
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)

        components = []
        for task, probe in tasks.items():
            if task in pending or task.cancelled():
                self.logger.error(
                    f"[{probe.name}] missed the {mode.value} deadline of {deadline:g}s"
                )
                components.append(
                    timed_out_component(probe.name, probe.dependencies, deadline, probe.endpoint)
                )
            elif task.exception() is not None:
                error = task.exception()
                self.logger.error(f"[{probe.name}] failed: {error}")
                components.append(
                    failed_component(
                        probe.name,
                        probe.dependencies,
                        f"{type(error).__name__}: {error}",
                        probe.endpoint,
                    )
                )
            else:
                components.append(task.result())

        snapshot = build_snapshot(mode, components)
        sw.stop()
        self._write_cache(mode, snapshot)

        if snapshot.summary.status == Status.HEALTHY:
            self.logger.debug(f"[{mode.value}] {snapshot.summary.message} (score={snapshot.score})")
        else:
            self.logger.warning(
                f"[{mode.value}] {snapshot.summary.message} (score={snapshot.score})"
            )
        if self.metrics is not None:
            self.metrics.record_aggregation(mode.value, snapshot.score, sw.elapsed * 1000)
        return snapshot

    def _read_cache(self, mode: SnapshotMode) -> Optional[HealthSnapshot]:
        try:
            cached = self.cache.get(mode)
        except Exception as e:
            self.logger.exception(f"[{mode.value}] snapshot cache read failed, treating as miss: {e}")
            return None

        if cached is not None and not isinstance(cached, HealthSnapshot):
            self.logger.error(
                f"[{mode.value}] snapshot cache held {type(cached).__name__}, discarding"
            )
            try:
                self.cache.invalidate(mode)
            except Exception as e:
                self.logger.exception(f"[{mode.value}] snapshot cache invalidate failed: {e}")
            cached = None

        if self.metrics is not None:
            self.metrics.record_cache_lookup(mode.value, cached is not None)
        return cached

    def _write_cache(self, mode: SnapshotMode, snapshot: HealthSnapshot) -> None:
        try:
            self.cache.put(mode, snapshot)
        except Exception as e:
            self.logger.exception(f"[{mode.value}] snapshot cache write failed: {e}")

    @staticmethod
    def _coerce_mode(mode: Union[SnapshotMode, str]) -> SnapshotMode:
        try:
            return SnapshotMode(mode)
        except ValueError:
            valid = ", ".join(m.value for m in SnapshotMode)
            raise RequestValidationError(f"invalid mode '{mode}', expected one of: {valid}")
