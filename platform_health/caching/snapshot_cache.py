import threading
import time
from typing import Callable, Dict, Mapping, Optional, Tuple, Union

from ..schemas.health import HealthSnapshot, SnapshotMode


class SnapshotCache:
    """
    Time-boxed store of the last snapshot per mode.

    One slot per mode, swapped atomically under a lock. An entry older than
    its mode's TTL reads as absent. There is no other eviction.

    Example:
        ```python
        cache = SnapshotCache(ttl={SnapshotMode.QUICK: 30, SnapshotMode.FULL: 60})
        cache.put(SnapshotMode.QUICK, snapshot)
        cache.get(SnapshotMode.QUICK)  # snapshot, until 30s have passed
        ```

    """

    def __init__(
        self,
        ttl: Mapping[SnapshotMode, float],
        clock: Callable[[], float] = time.monotonic,
    ):
        missing = [m.value for m in SnapshotMode if m not in ttl]
        if missing:
            raise ValueError(f"missing TTL for mode(s): {', '.join(missing)}")
        if any(v < 0 for v in ttl.values()):
            raise ValueError("TTL must be non-negative")

        self.ttl: Dict[SnapshotMode, float] = dict(ttl)
        self._clock = clock
        self._lock = threading.Lock()
        self._slots: Dict[SnapshotMode, Tuple[float, HealthSnapshot]] = {}

    def get(self, mode: Union[SnapshotMode, str]) -> Optional[HealthSnapshot]:
        mode = SnapshotMode(mode)
        with self._lock:
            entry = self._slots.get(mode)
        if entry is None:
            return None
        stored_at, snapshot = entry
        if self._clock() - stored_at >= self.ttl[mode]:
            return None
        return snapshot

    def put(self, mode: Union[SnapshotMode, str], snapshot: HealthSnapshot) -> None:
        mode = SnapshotMode(mode)
        entry = (self._clock(), snapshot)
        with self._lock:
            self._slots[mode] = entry

    def invalidate(self, mode: Union[SnapshotMode, str]) -> None:
        mode = SnapshotMode(mode)
        with self._lock:
            self._slots.pop(mode, None)

    def clear(self) -> None:
        with self._lock:
            self._slots.clear()

    def age(self, mode: Union[SnapshotMode, str]) -> Optional[float]:
        """Seconds since the slot was written, expired or not; None if empty."""
        mode = SnapshotMode(mode)
        with self._lock:
            entry = self._slots.get(mode)
        if entry is None:
            return None
        return max(0.0, self._clock() - entry[0])
