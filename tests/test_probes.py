import asyncio
from unittest.mock import MagicMock

import redis.exceptions

from platform_health.health.checks.assets import ASSET_QUERY, AssetDeliveryProbe
from platform_health.health.checks.cache import CacheProbe, hit_rate_from_stats
from platform_health.health.checks.connection import CONNECTION_QUERY, ConnectionProbe
from platform_health.health.checks.consistency import DEFAULT_RELATIONS, ConsistencyProbe
from platform_health.health.checks.query import CriticalQuery, QueryProbe
from platform_health.health.checks.schema import EXPECTED_SCHEMAS, SchemaProbe
from platform_health.health.checks.subsystem import SUBSYSTEMS, Subsystem, SubsystemProbe
from platform_health.schemas.health import Status

from .conftest import StaticProbe, decode_params

ASSET = {
    "_id": "image-abc-100x100-png",
    "url": "https://cdn.example.io/images/abc.png",
    "metadata": {"dimensions": {"width": 100, "height": 100}},
}


class TestConnectionProbe:
    async def test_healthy(self, make_store):
        store = make_store({CONNECTION_QUERY: {"_id": "image-1"}})
        health = await ConnectionProbe(store).probe()

        assert health.status == Status.HEALTHY
        assert health.component_name == "connection"
        assert health.endpoint == "https://abc123.api.example.io/v2024-01-01/data/query/production"
        assert health.performance.error_rate == 0.0

    async def test_backend_error_is_critical(self, make_store):
        store = make_store(status=500)
        health = await ConnectionProbe(store).probe()

        assert health.status == Status.CRITICAL
        assert health.issues[0].message.startswith("Connection failed")
        assert "query failed" in health.issues[0].message
        assert health.performance.error_rate == 1.0

    async def test_slow_is_warning(self, make_store):
        store = make_store({CONNECTION_QUERY: None})
        health = await ConnectionProbe(store, slow_ms=-1).probe()

        assert health.status == Status.WARNING
        assert "slow but functional" in health.issues[0].message


class TestCacheProbe:
    def test_hit_rate(self):
        assert hit_rate_from_stats({"keyspace_hits": 3, "keyspace_misses": 1}) == 0.75
        assert hit_rate_from_stats({"keyspace_hits": 0, "keyspace_misses": 0}) is None
        assert hit_rate_from_stats({}) is None

    async def test_healthy(self, redis_client):
        health = await CacheProbe(redis_client).probe()

        assert health.status == Status.HEALTHY
        assert health.performance.cache_hit_rate == 0.9

    async def test_low_hit_rate_is_warning(self, redis_client):
        redis_client.info.return_value = {"keyspace_hits": 50, "keyspace_misses": 50}
        health = await CacheProbe(redis_client).probe()

        assert health.status == Status.WARNING
        assert health.issues[0].message == "Cache hit rate: 50.0%"

    async def test_very_low_hit_rate_is_critical(self, redis_client):
        redis_client.info.return_value = {"keyspace_hits": 1, "keyspace_misses": 9}
        health = await CacheProbe(redis_client).probe()

        assert health.status == Status.CRITICAL

    async def test_no_traffic_has_no_hit_rate(self, redis_client):
        redis_client.info.return_value = {"keyspace_hits": 0, "keyspace_misses": 0}
        health = await CacheProbe(redis_client).probe()

        assert health.status == Status.HEALTHY
        assert health.performance.cache_hit_rate is None

    async def test_unreachable_is_critical(self, redis_client):
        redis_client.ping.side_effect = redis.exceptions.ConnectionError("Connection refused")
        health = await CacheProbe(redis_client, endpoint="localhost:6379/0").probe()

        assert health.status == Status.CRITICAL
        assert "Connection refused" in health.issues[0].message
        assert health.endpoint == "localhost:6379/0"
        redis_client.info.assert_not_called()

    async def test_stats_unavailable_is_warning(self, redis_client):
        redis_client.info.side_effect = redis.exceptions.ResponseError("unknown command")
        health = await CacheProbe(redis_client).probe()

        assert health.status == Status.WARNING
        assert health.issues[0].message == "Cache monitoring unavailable"
        assert health.performance.cache_hit_rate is None


class TestAssetDeliveryProbe:
    async def test_healthy(self, make_store):
        health = await AssetDeliveryProbe(make_store({ASSET_QUERY: ASSET})).probe()

        assert health.status == Status.HEALTHY
        assert health.endpoint == ASSET["url"]
        assert health.dependencies == ["connection"]

    async def test_no_asset_is_warning(self, make_store):
        health = await AssetDeliveryProbe(make_store({ASSET_QUERY: None})).probe()

        assert health.status == Status.WARNING
        assert health.issues[0].message == "No assets found in the content store"

    async def test_cdn_error_is_critical(self, make_store):
        store = make_store({ASSET_QUERY: ASSET}, head_status=404)
        health = await AssetDeliveryProbe(store).probe()

        assert health.status == Status.CRITICAL
        assert health.issues[0].message == "Asset delivery failed: HTTP 404"


class TestQueryProbe:
    async def test_all_fast(self, make_store):
        health = await QueryProbe(make_store()).probe()

        assert health.status == Status.HEALTHY
        assert health.performance.error_rate == 0.0

    async def test_slow_query_is_warning(self, make_store):
        queries = [CriticalQuery("Product Listings", '*[_type == "product"][0]', -1)]
        health = await QueryProbe(make_store(), queries=queries).probe()

        assert health.status == Status.WARNING
        assert health.issues[0].message.startswith("Product Listings: query is slower")

    async def test_failing_queries(self, make_store):
        health = await QueryProbe(make_store(status=400)).probe()

        assert health.status == Status.CRITICAL
        assert len(health.issues) == 4
        assert health.performance.error_rate == 1.0


class TestSchemaProbe:
    async def test_counts_every_type(self, make_store):
        seen = []
        store = make_store({"count(*[_type == $type])": 3}, seen=seen)
        health = await SchemaProbe(store).probe()

        assert health.status == Status.HEALTHY
        assert [decode_params(r)["type"] for r in seen] == list(EXPECTED_SCHEMAS)

    async def test_empty_required_type_is_warning(self, make_store):
        store = make_store({"count(*[_type == $type])": 0})
        health = await SchemaProbe(store, schema_types=["product", "author"]).probe()

        assert health.status == Status.WARNING
        assert [i.message for i in health.issues] == ["Schema product: no documents found"]

    async def test_non_integer_count_is_critical(self, make_store):
        store = make_store({"count(*[_type == $type])": "3"})
        health = await SchemaProbe(store, schema_types=["product"]).probe()

        assert health.status == Status.CRITICAL
        assert health.performance.error_rate == 1.0


class TestConsistencyProbe:
    async def test_orphans_are_warnings(self, make_store):
        counts = dict.fromkeys((r.query for r in DEFAULT_RELATIONS), 0)
        counts[DEFAULT_RELATIONS[0].query] = 2
        store = make_store(counts)
        health = await ConsistencyProbe(store).probe()

        assert health.status == Status.WARNING
        assert health.issues[0].message == "Product-Category Relations: 2 orphaned documents"


class TestProbeBase:
    async def test_timeout_is_indeterminate(self):
        health = await StaticProbe("queries", delay=1, timeout=0.01).probe()

        assert health.status == Status.CRITICAL
        assert health.indeterminate is True
        assert health.issues[0].message == "probe timed out after 0.01s"

    async def test_unexpected_error_never_raises(self):
        health = await StaticProbe("queries", error=KeyError("x")).probe()

        assert health.status == Status.CRITICAL
        assert health.issues[0].message == "probe failed: KeyError: 'x'"
        assert health.performance.average_response_time_ms == 0.0

    async def test_records_metrics(self):
        metrics = MagicMock()
        await StaticProbe("queries", metrics=metrics).probe()

        component, status, duration = metrics.record_probe.call_args.args
        assert (component, status) == ("queries", "healthy")
        assert duration >= 0

    async def test_cancellation_propagates(self):
        probe = StaticProbe("queries", delay=1)
        task = asyncio.create_task(probe.probe())
        await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert task.cancelled()
        assert probe.cancelled is True


class TestSubsystemProbe:
    def _licenses(self):
        return next(s for s in SUBSYSTEMS if s.key == "licenses_api")

    async def test_healthy_subsystem(self, make_store):
        subsystem = self._licenses()
        seen = []
        health = await SubsystemProbe(make_store(seen=seen), subsystem).probe()

        assert health.component_name == "licenses_api"
        assert health.status == Status.HEALTHY
        assert health.dependencies == ["license", "accessPass", "order"]
        assert health.endpoint == "/api/user/licenses"
        assert [r.url.params["query"] for r in seen] == [q.query for q in subsystem.queries]

    async def test_failing_queries_are_critical(self, make_store):
        health = await SubsystemProbe(make_store(status=500), self._licenses()).probe()

        assert health.status == Status.CRITICAL
        assert len(health.issues) == 3
        assert health.issues[0].message.startswith("License Management: license validation failed")
        assert health.performance.error_rate == 1.0

    async def test_slow_query_is_warning(self, make_store):
        subsystem = Subsystem(
            key="orders_api",
            title="Orders",
            endpoint="/api/orders",
            dependencies=("order",),
            queries=(CriticalQuery("order listing", '*[_type == "order"][0]', -1),),
        )
        health = await SubsystemProbe(make_store(), subsystem).probe()

        assert health.status == Status.WARNING
        assert health.issues[0].message.startswith("Orders: order listing is slow")

    async def test_detailed_metrics(self, make_store):
        subsystem = self._licenses()
        counts = {query: n for n, query in enumerate(subsystem.metrics.values())}
        metrics = await SubsystemProbe(make_store(counts), subsystem).detailed_metrics()

        assert metrics == {
            "total_licenses": 0,
            "active_licenses": 1,
            "expired_licenses": 2,
            "total_downloads": 3,
        }

    async def test_detailed_metrics_failure_is_reported(self, make_store):
        metrics = await SubsystemProbe(make_store(status=500), self._licenses()).detailed_metrics()

        assert metrics["error"] == "Failed to load detailed metrics"
        assert "query failed" in metrics["details"]

    def test_every_subsystem_is_distinct(self):
        keys = [s.key for s in SUBSYSTEMS]
        assert len(keys) == len(set(keys)) == 6
        assert all(s.queries and s.dependencies and s.metrics for s in SUBSYSTEMS)
