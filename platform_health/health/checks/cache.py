from typing import Optional

import redis.asyncio as redis

from ...schemas.health import Issue, PerformanceMetrics, Status
from ...utils.timing import Stopwatch
from ..base import ProbeBase, ProbeKind, ProbeOutcome


def hit_rate_from_stats(stats: dict) -> Optional[float]:
    """Keyspace hit rate from ``INFO stats``; None when there was no traffic."""
    hits = int(stats.get("keyspace_hits", 0) or 0)
    misses = int(stats.get("keyspace_misses", 0) or 0)
    total = hits + misses
    if total == 0:
        return None
    return hits / total


class CacheProbe(ProbeBase):
    """
    Redis cache layer.

    Thresholds: hit rate >= ``healthy_hit_rate`` is healthy, >= ``warning_hit_rate``
    a warning, below that critical. No traffic yet reports no hit rate and no
    issue. A PING slower than ``slow_ms`` is a warning; a failed PING is
    critical. If PING works but stats are unavailable the hit rate is unknown
    and reported as a warning.
    """

    name = "cache"
    kind = ProbeKind.CACHE

    def __init__(  # noqa: D107
        self,
        client: redis.Redis,
        healthy_hit_rate: float = 0.7,
        warning_hit_rate: float = 0.4,
        slow_ms: float = 1000.0,
        endpoint: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client = client
        self.healthy_hit_rate = healthy_hit_rate
        self.warning_hit_rate = warning_hit_rate
        self.slow_ms = slow_ms
        self.endpoint = endpoint

    async def check(self) -> ProbeOutcome:
        """Check Redis connectivity and hit rate."""
        issues = []
        with Stopwatch() as sw:
            try:
                await self.client.ping()
            except Exception as e:
                return ProbeOutcome(
                    issues=[
                        Issue(
                            status=Status.CRITICAL,
                            message=f"Cache unreachable: {e}",
                            suggestions=["Check Redis availability", "Verify the Redis URL"],
                        )
                    ],
                    performance=PerformanceMetrics(error_rate=1.0),
                )

        if sw.elapsed_ms > self.slow_ms:
            issues.append(
                Issue(
                    status=Status.WARNING,
                    message=f"Cache is responding slowly ({sw.elapsed_ms}ms > {self.slow_ms:g}ms)",
                    suggestions=["Check Redis memory and CPU usage"],
                )
            )

        try:
            stats = await self.client.info("stats")
            hit_rate = hit_rate_from_stats(stats)
        except Exception:
            issues.append(
                Issue(
                    status=Status.WARNING,
                    message="Cache monitoring unavailable",
                    suggestions=["Implement cache monitoring", "Check cache configuration"],
                )
            )
            hit_rate = None
        else:
            if hit_rate is not None and hit_rate < self.healthy_hit_rate:
                status = (
                    Status.WARNING if hit_rate >= self.warning_hit_rate else Status.CRITICAL
                )
                issues.append(
                    Issue(
                        status=status,
                        message=f"Cache hit rate: {hit_rate * 100:.1f}%",
                        suggestions=[
                            "Review cache configuration",
                            "Optimize cache keys",
                            "Increase cache TTL for stable data",
                        ],
                    )
                )

        return ProbeOutcome(
            issues=issues,
            performance=PerformanceMetrics(
                average_response_time_ms=float(sw.elapsed_ms),
                error_rate=0.0,
                cache_hit_rate=hit_rate,
            ),
        )
