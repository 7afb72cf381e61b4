import inspect
import time
from datetime import datetime, timezone
from functools import lru_cache, wraps
from typing import Callable, Optional

from .log_common import build_logger


@lru_cache(maxsize=1)
def get_timing_logger():
    """Cache the default logger to avoid handler duplication."""
    return build_logger("timing")


class Stopwatch:
    """
    Wall-clock and monotonic timing for one operation.

    ``start_time``/``end_time`` are UTC datetimes for reporting; the elapsed
    value comes from ``time.perf_counter`` so it never goes negative.

    Example:
        ```python
        with Stopwatch() as sw:
            await client.fetch(query)
        sw.elapsed_ms  # int, >= 0
        ```

    """

    def __init__(self):
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self._t0: Optional[float] = None
        self._t1: Optional[float] = None

    def start(self) -> "Stopwatch":
        self.start_time = datetime.now(timezone.utc)
        self._t0 = time.perf_counter()
        self._t1 = None
        self.end_time = None
        return self

    def stop(self) -> "Stopwatch":
        if self._t0 is None:
            self.start()
        if self._t1 is None:
            self._t1 = time.perf_counter()
            self.end_time = datetime.now(timezone.utc)
        return self

    @property
    def elapsed(self) -> float:
        """Elapsed seconds; reads the running clock while not stopped."""
        if self._t0 is None:
            return 0.0
        end = self._t1 if self._t1 is not None else time.perf_counter()
        return max(0.0, end - self._t0)

    @property
    def elapsed_ms(self) -> int:
        return int(round(self.elapsed * 1000))

    def __enter__(self) -> "Stopwatch":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def _log_time(f, logger, level: str, tag: Optional[str], threshold_warning: Optional[float], elapsed: float):
    module = inspect.getmodule(f)
    modname = module.__name__ if module else "unknown"
    qualname = getattr(f, "__qualname__", f.__name__)
    tag_text = f"[{tag}] " if tag else ""
    msg = f"[{elapsed:7.3f}s] {tag_text}{modname}.{qualname}"

    if threshold_warning and elapsed > threshold_warning:
        logger.warning(f"{msg} exceeded {threshold_warning:.3f}s")
    else:
        getattr(logger, level, logger.info)(msg)


def measure_time(
    func=None,
    *,
    logger=None,
    level: str = "debug",
    threshold_warning: Optional[float] = None,
    metric_collector: Optional[Callable[[str, float], None]] = None,
    tag: Optional[str] = None,
):
    """
    Timing decorator for sync and async callables.

    Logs the elapsed time (as a warning above ``threshold_warning`` seconds)
    and forwards ``(qualname, elapsed)`` to ``metric_collector``. The elapsed
    time is recorded even when the wrapped call raises.

    Args:
        logger: Optional custom logger. Default = cached timing logger.
        level: Log level for normal timing logs.
        threshold_warning: Log warning if elapsed_time > threshold (seconds).
        metric_collector: Function to collect (func_name, elapsed_time) metrics.
        tag: Optional label for grouping logs (e.g., "probe", "aggregate").

    """

    def decorator(f):
        def _record(elapsed: float) -> None:
            log = logger or get_timing_logger()
            _log_time(f, log, level, tag, threshold_warning, elapsed)
            if metric_collector:
                try:
                    metric_collector(f.__qualname__, elapsed)
                except Exception as e:
                    log.warning(f"[timing] Metric collector failed: {e}")

        if inspect.iscoroutinefunction(f):

            @wraps(f)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                try:
                    return await f(*args, **kwargs)
                finally:
                    _record(time.perf_counter() - start)

            return async_wrapper

        @wraps(f)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return f(*args, **kwargs)
            finally:
                _record(time.perf_counter() - start)

        return sync_wrapper

    return decorator if func is None else decorator(func)
