from dataclasses import dataclass
from typing import List, Optional

import redis.asyncio as redis

from .caching.snapshot_cache import SnapshotCache
from .clients.content_store import ContentStoreClient
from .config import HealthSettings
from .health.base import ProbeBase
from .health.checks.assets import AssetDeliveryProbe
from .health.checks.cache import CacheProbe
from .health.checks.connection import ConnectionProbe
from .health.checks.consistency import ConsistencyProbe
from .health.checks.query import QueryProbe
from .health.checks.schema import SchemaProbe
from .health.checks.subsystem import SUBSYSTEMS, SubsystemProbe
from .health.guard import QueryGuard
from .health.manager import HealthAggregator
from .health.poller import Poller
from .health.runner import TestRunner
from .health.service import HealthService
from .metric.otel import EngineMetrics, setup_metrics
from .schemas.health import SnapshotMode
from .utils.log_common import build_logger, configure_logging

logger = build_logger("factory")


@dataclass
class Engine:
    settings: HealthSettings
    content_store: ContentStoreClient
    cache_client: redis.Redis
    aggregator: HealthAggregator
    runner: TestRunner
    service: HealthService
    poller: Poller

    async def close(self) -> None:
        await self.poller.stop()
        await self.content_store.close()
        await self.cache_client.aclose()


def build_probes(
    settings: HealthSettings,
    content_store: ContentStoreClient,
    cache_client: redis.Redis,
    metrics: Optional[EngineMetrics] = None,
) -> List[ProbeBase]:
    common = {"timeout": settings.probe_timeout, "metrics": metrics}
    probes = [
        ConnectionProbe(content_store, slow_ms=settings.connection_slow_ms, **common),
        CacheProbe(
            cache_client,
            healthy_hit_rate=settings.cache_hit_rate_healthy,
            warning_hit_rate=settings.cache_hit_rate_warning,
            slow_ms=settings.cache_ping_slow_ms,
            endpoint=settings.redis_url.split("@")[-1],
            **common,
        ),
        AssetDeliveryProbe(content_store, slow_ms=settings.asset_slow_ms, **common),
        QueryProbe(content_store, **common),
        SchemaProbe(content_store, **common),
        ConsistencyProbe(content_store, **common),
    ]
    if settings.subsystem_checks:
        probes.extend(SubsystemProbe(content_store, s, **common) for s in SUBSYSTEMS)
    return probes


def build_engine(
    settings: Optional[HealthSettings] = None,
    content_store: Optional[ContentStoreClient] = None,
    cache_client: Optional[redis.Redis] = None,
) -> Engine:
    """
    Wire clients, probes, cache, aggregator, runner and service from settings.

    Clients can be passed in to share connections with the host application.
    """
    settings = settings or HealthSettings()
    configure_logging(level=settings.log_level, log_path=settings.log_path)

    if settings.otlp_endpoint:
        setup_metrics(
            settings.service_name,
            otlp_endpoint=settings.otlp_endpoint,
            otlp_insecure=settings.otlp_insecure,
        )
    metrics = EngineMetrics()

    content_store = content_store or ContentStoreClient(
        settings.content_store_url,
        settings.dataset,
        api_version=settings.api_version,
        token=settings.content_store_token,
        timeout=settings.http_timeout,
    )
    cache_client = cache_client or redis.from_url(
        settings.redis_url,
        socket_timeout=settings.http_timeout,
        socket_connect_timeout=settings.http_timeout,
    )

    probes = build_probes(settings, content_store, cache_client, metrics)
    aggregator = HealthAggregator(
        probes=probes,
        cache=SnapshotCache(
            ttl={
                SnapshotMode.QUICK: settings.quick_cache_ttl,
                SnapshotMode.FULL: settings.full_cache_ttl,
            }
        ),
        timeouts={
            SnapshotMode.QUICK: settings.quick_timeout,
            SnapshotMode.FULL: settings.full_timeout,
        },
        max_concurrency=settings.max_concurrency,
        metrics=metrics,
    )
    runner = TestRunner.for_probes(
        probes,
        content_store,
        cache_client,
        performance_iterations=settings.performance_iterations,
        performance_threshold_ms=settings.performance_threshold_ms,
        test_timeout=settings.test_timeout,
        query_guard=QueryGuard(
            max_length=settings.custom_query_max_length,
            read_only=settings.custom_query_read_only,
        ),
        metrics=metrics,
    )
    service = HealthService(aggregator, runner)
    poller = Poller(
        aggregator,
        quick_interval=settings.quick_poll_interval,
        full_interval=settings.full_poll_interval,
    )
    logger.info(
        f"Health engine ready with {len(probes)} probes: {', '.join(aggregator.probe_names)}"
    )
    return Engine(
        settings=settings,
        content_store=content_store,
        cache_client=cache_client,
        aggregator=aggregator,
        runner=runner,
        service=service,
        poller=poller,
    )
