import asyncio
import json
from typing import Callable, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from platform_health.caching.snapshot_cache import SnapshotCache
from platform_health.clients.content_store import ContentStoreClient
from platform_health.health.base import ProbeBase, ProbeKind, ProbeOutcome
from platform_health.schemas.health import (
    ComponentHealth,
    Issue,
    PerformanceMetrics,
    SnapshotMode,
    Status,
)


class StaticProbe(ProbeBase):
    """Probe that reports a fixed set of issues and counts its runs."""

    def __init__(
        self,
        name: str,
        issues: Optional[List[Issue]] = None,
        kind: ProbeKind = ProbeKind.QUERY,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.name = name
        self.kind = kind
        self.issues = issues or []
        self.delay = delay
        self.error = error
        self.calls = 0
        self.cancelled = False

    async def check(self) -> ProbeOutcome:
        self.calls += 1
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return ProbeOutcome(
            issues=list(self.issues),
            performance=PerformanceMetrics(average_response_time_ms=12.0),
        )


def warning(message: str = "slow") -> Issue:
    return Issue(status=Status.WARNING, message=message)


def critical(message: str = "down") -> Issue:
    return Issue(status=Status.CRITICAL, message=message)


def component(name: str, status: Status = Status.HEALTHY, **kwargs) -> ComponentHealth:
    issues = kwargs.pop("issues", None)
    if issues is None:
        issues = [] if status == Status.HEALTHY else [Issue(status=status, message=f"{name} {status.value}")]
    return ComponentHealth(component_name=name, status=status, issues=issues, **kwargs)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def query_transport(
    results: Dict[str, object],
    status: int = 200,
    head_status: int = 200,
    seen: Optional[List[httpx.Request]] = None,
) -> httpx.MockTransport:
    """
    Mock content store: answers each query with ``results[query]``.

    Queries missing from ``results`` get ``{"result": None}``. HEAD requests
    answer ``head_status``.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.method == "HEAD":
            return httpx.Response(head_status)
        if status >= 400:
            return httpx.Response(
                status, json={"error": {"description": "query failed", "type": "queryParseError"}}
            )
        query = request.url.params.get("query")
        return httpx.Response(200, json={"result": results.get(query)})

    return httpx.MockTransport(handler)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def snapshot_cache(clock) -> SnapshotCache:
    return SnapshotCache(ttl={SnapshotMode.QUICK: 30, SnapshotMode.FULL: 60}, clock=clock)


@pytest.fixture
def make_store() -> Callable[..., ContentStoreClient]:
    def _make(results: Optional[Dict[str, object]] = None, **kwargs) -> ContentStoreClient:
        return ContentStoreClient(
            "https://abc123.api.example.io",
            "production",
            transport=query_transport(results or {}, **kwargs),
        )

    return _make


@pytest.fixture
def redis_client() -> AsyncMock:
    client = AsyncMock()
    client.ping.return_value = True
    client.info.return_value = {"keyspace_hits": 90, "keyspace_misses": 10}
    store = {}

    async def _set(key, value, ex=None):
        store[key] = value.encode("utf-8") if isinstance(value, str) else value
        return True

    async def _get(key):
        return store.get(key)

    async def _delete(key):
        return 1 if store.pop(key, None) is not None else 0

    client.set.side_effect = _set
    client.get.side_effect = _get
    client.delete.side_effect = _delete
    return client


def decode_params(request: httpx.Request) -> Dict[str, object]:
    return {
        k[1:]: json.loads(v) for k, v in request.url.params.items() if k.startswith("$")
    }
