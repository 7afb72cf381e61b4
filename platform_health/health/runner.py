import asyncio
import uuid
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import loguru._logger
import redis.asyncio as redis
from pydantic import ValidationError

from ..clients.content_store import ContentStoreClient
from ..exceptions import BackendError, RequestValidationError
from ..metric.otel import EngineMetrics
from ..schemas.health import TestRequest, TestResult, TestType
from ..utils.log_common import build_logger
from ..utils.timing import Stopwatch
from .base import ProbeBase, ProbeKind
from .checks.assets import ASSET_QUERY
from .checks.connection import CONNECTION_QUERY
from .guard import QueryGuard

PERFORMANCE_QUERY = '*[_type == "product"][0...10]{_id, title, price}'
INTEGRITY_COUNTS = {
    "products": 'count(*[_type == "product"])',
    "categories": 'count(*[_type == "category"])',
}
FIXTURE_PREFIX = "platform_health:integrity"

# (success, message, response_time_ms, details)
Outcome = Tuple[bool, str, Optional[int], Dict[str, Any]]


class TestRunner:
    """
    Runs one on-demand diagnostic test against one component.

    Every call runs independently: no caching and no coalescing. Requests
    are validated before anything touches a backend; after that nothing is
    raised, every failure comes back as ``TestResult(success=False)`` with
    timing filled in.

    Usage:
        ```python
        runner = TestRunner(
            content_store=client,
            cache_client=redis_client,
            components={"connection": ProbeKind.CONNECTION, "cache": ProbeKind.CACHE},
        )
        result = await runner.run_test({"component_name": "cache", "test_type": "connectivity"})
        ```
    """

    __test__ = False

    def __init__(
        self,
        content_store: ContentStoreClient,
        cache_client: redis.Redis,
        components: Mapping[str, ProbeKind],
        performance_iterations: int = 5,
        performance_threshold_ms: float = 2000.0,
        test_timeout: float = 30.0,
        query_guard: Optional[QueryGuard] = None,
        metrics: Optional[EngineMetrics] = None,
        logger: Optional[loguru._logger.Logger] = None,
    ):
        if performance_iterations < 1:
            raise ValueError("performance_iterations must be at least 1")
        self.content_store = content_store
        self.cache_client = cache_client
        self.components = dict(components)
        self.performance_iterations = performance_iterations
        self.performance_threshold_ms = performance_threshold_ms
        self.test_timeout = test_timeout
        self.query_guard = query_guard or QueryGuard()
        self.metrics = metrics
        self.logger = logger or build_logger("test_runner")

    @classmethod
    def for_probes(cls, probes, content_store, cache_client, **kwargs) -> "TestRunner":
        """Build a runner that can test every component the given probes cover."""
        components = {p.name: p.kind for p in probes if isinstance(p, ProbeBase)}
        return cls(content_store, cache_client, components, **kwargs)

    def validate(self, request: Union[TestRequest, Mapping[str, Any]]) -> TestRequest:
        """
        Normalize and check a request without running it.

        Raises:
            RequestValidationError: On a malformed request, an unknown
                component or a custom query rejected by the query guard

        """
        if not isinstance(request, TestRequest):
            try:
                request = TestRequest.model_validate(request)
            except ValidationError as e:
                raise RequestValidationError(
                    "invalid test request", errors=e.errors(include_url=False, include_context=False)
                ) from e

        if request.component_name not in self.components:
            known = ", ".join(sorted(self.components))
            raise RequestValidationError(
                f"unknown component '{request.component_name}', expected one of: {known}"
            )
        if request.test_type == TestType.CUSTOM:
            self.query_guard.check(request.custom_query)
        return request

    async def run_test(self, request: Union[TestRequest, Mapping[str, Any]]) -> TestResult:
        request = self.validate(request)
        kind = self.components[request.component_name]
        handler = {
            TestType.CONNECTIVITY: self._connectivity,
            TestType.PERFORMANCE: self._performance,
            TestType.DATA_INTEGRITY: self._data_integrity,
            TestType.CUSTOM: self._custom,
        }[request.test_type]

        timed_out = False
        sw = Stopwatch().start()
        try:
            success, message, response_time, details = await asyncio.wait_for(
                handler(kind, request), timeout=self.test_timeout
            )
        except asyncio.TimeoutError:
            timed_out = True
            success, message, response_time, details = (
                False,
                f"Test failed: timed out after {self.test_timeout:g}s",
                None,
                {},
            )
        except Exception as e:
            success, message, response_time, details = (
                False,
                f"Test failed: {e}",
                None,
                {"error_type": type(e).__name__},
            )
        sw.stop()

        result = TestResult(
            component_name=request.component_name,
            test_type=request.test_type,
            success=success,
            message=message,
            duration_ms=sw.elapsed_ms,
            start_time=sw.start_time,
            end_time=sw.end_time,
            response_time=response_time,
            details=details,
            timed_out=timed_out,
        )
        log = self.logger.info if success else self.logger.warning
        log(
            f"[{request.component_name}] {request.test_type.value} test "
            f"{'passed' if success else 'failed'} in {result.duration_ms}ms: {message}"
        )
        if self.metrics is not None:
            self.metrics.record_test(request.component_name, request.test_type.value, success)
        return result

    async def _first_asset_url(self) -> str:
        asset = await self.content_store.fetch(ASSET_QUERY)
        if not isinstance(asset, dict) or not asset.get("url"):
            raise BackendError("no asset with a url found in the content store")
        return asset["url"]

    async def _connectivity(self, kind: ProbeKind, request: TestRequest) -> Outcome:
        with Stopwatch() as sw:
            if kind == ProbeKind.CACHE:
                pong = await self.cache_client.ping()
                ok = bool(pong)
                detail = {"pong": ok}
                failure = "cache did not answer PING"
            elif kind == ProbeKind.ASSET_DELIVERY:
                url = await self._first_asset_url()
                resp = await self.content_store.head(url)
                ok = resp.is_success
                detail = {"url": url, "http_status": resp.status_code}
                failure = f"asset returned HTTP {resp.status_code}"
            else:
                await self.content_store.fetch(CONNECTION_QUERY)
                ok = True
                detail = {}
                failure = ""

        message = "Connectivity test passed" if ok else f"Connectivity test failed: {failure}"
        return ok, message, sw.elapsed_ms, detail

    async def _performance(self, kind: ProbeKind, request: TestRequest) -> Outcome:
        if kind == ProbeKind.CACHE:
            async def call():
                await self.cache_client.ping()
        elif kind == ProbeKind.ASSET_DELIVERY:
            url = await self._first_asset_url()

            async def call():
                resp = await self.content_store.head(url)
                if not resp.is_success:
                    raise BackendError(f"asset returned HTTP {resp.status_code}", resp.status_code)
        else:
            async def call():
                await self.content_store.fetch(PERFORMANCE_QUERY)

        timings = []
        for _ in range(self.performance_iterations):
            with Stopwatch() as sw:
                await call()
            timings.append(sw.elapsed)

        average_ms = sum(timings) / len(timings) * 1000
        response_time = int(round(average_ms))
        ok = average_ms < self.performance_threshold_ms
        message = f"Performance test: {response_time}ms {'(Good)' if ok else '(Slow)'}"
        details = {
            "iterations": self.performance_iterations,
            "threshold_ms": self.performance_threshold_ms,
            "max_ms": int(round(max(timings) * 1000)),
        }
        return ok, message, response_time, details

    async def _data_integrity(self, kind: ProbeKind, request: TestRequest) -> Outcome:
        if kind == ProbeKind.CACHE:
            key = f"{FIXTURE_PREFIX}:{uuid.uuid4().hex}"
            value = uuid.uuid4().hex
            try:
                await self.cache_client.set(key, value, ex=60)
                stored = await self.cache_client.get(key)
            finally:
                await self.cache_client.delete(key)
            if isinstance(stored, bytes):
                stored = stored.decode("utf-8")
            ok = stored == value
            message = (
                "Data integrity: cache write/read round trip succeeded"
                if ok
                else "Data integrity: cache returned a different value than written"
            )
            return ok, message, None, {"fixture_key": key}

        if kind == ProbeKind.ASSET_DELIVERY:
            asset = await self.content_store.fetch(ASSET_QUERY)
            has_url = isinstance(asset, dict) and bool(asset.get("url"))
            dimensions = ((asset or {}).get("metadata") or {}).get("dimensions") if has_url else None
            message = (
                f"Data integrity: asset {asset.get('_id')} has a delivery url"
                if has_url
                else "Data integrity: no asset with a delivery url"
            )
            return has_url, message, None, {"dimensions": dimensions}

        counts = {}
        for label, query in INTEGRITY_COUNTS.items():
            count = await self.content_store.fetch(query)
            if isinstance(count, bool) or not isinstance(count, int):
                raise BackendError(f"expected a count for {label}, got {count!r}")
            counts[label] = count
        ok = all(c > 0 for c in counts.values())
        message = "Data integrity: " + ", ".join(f"{v} {k}" for k, v in counts.items())
        return ok, message, None, {"counts": counts}

    async def _custom(self, kind: ProbeKind, request: TestRequest) -> Outcome:
        with Stopwatch() as sw:
            result = await self.content_store.fetch(request.custom_query)
        summary = f"{len(result)} results" if isinstance(result, list) else "Query completed"
        return True, "Custom query executed successfully", sw.elapsed_ms, {"result": summary}
