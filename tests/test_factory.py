from fastapi.testclient import TestClient

from platform_health.api.routes import create_app, set_service
from platform_health.config import HealthSettings
from platform_health.factory import build_engine
from platform_health.health.checks.connection import CONNECTION_QUERY
from platform_health.schemas.health import SnapshotMode


def _settings(**overrides):
    values = {
        "content_store_url": "https://abc123.api.example.io",
        "quick_cache_ttl": 15,
        "full_timeout": 3,
        "custom_query_max_length": 50,
    }
    values.update(overrides)
    return HealthSettings(**values)


def test_wires_every_probe(make_store, redis_client):
    engine = build_engine(_settings(), content_store=make_store(), cache_client=redis_client)

    assert engine.aggregator.probe_names == [
        "connection",
        "cache",
        "assets",
        "queries",
        "schemas",
        "consistency",
        "products_api",
        "users_api",
        "partner_api",
        "licenses_api",
        "analytics_api",
        "content_api",
    ]
    assert engine.aggregator.cache.ttl[SnapshotMode.QUICK] == 15
    assert engine.aggregator.timeouts[SnapshotMode.FULL] == 3
    assert engine.runner.query_guard.max_length == 50
    assert set(engine.runner.components) == set(engine.aggregator.probe_names)


def test_subsystem_checks_can_be_disabled(make_store, redis_client):
    engine = build_engine(
        _settings(subsystem_checks=False), content_store=make_store(), cache_client=redis_client
    )

    assert "products_api" not in engine.aggregator.probe_names
    assert len(engine.aggregator.probe_names) == 6


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("PLATFORM_HEALTH_DATASET", "staging")
    monkeypatch.setenv("PLATFORM_HEALTH_FULL_CACHE_TTL", "120")

    settings = HealthSettings()

    assert settings.dataset == "staging"
    assert settings.full_cache_ttl == 120.0
    assert settings.quick_cache_ttl == 30.0


async def test_quick_snapshot_end_to_end(make_store, redis_client):
    store = make_store({CONNECTION_QUERY: {"_id": "image-1"}})
    engine = build_engine(_settings(), content_store=store, cache_client=redis_client)

    response = await engine.service.health("quick")

    assert response.body.score == 100
    assert [c.component_name for c in response.body.components] == ["cache", "connection"]
    await engine.close()
    redis_client.aclose.assert_awaited_once()


def test_app_lifespan_runs_poller(make_store, redis_client):
    engine = build_engine(_settings(), content_store=make_store(), cache_client=redis_client)
    app = create_app(engine)

    with TestClient(app) as client:
        assert engine.poller.running
        assert client.get("/health/components").status_code == 200

    assert not engine.poller.running
    set_service(None)
