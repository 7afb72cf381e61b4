import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from ..metric.otel import EngineMetrics
from ..schemas.health import ComponentHealth, Issue, PerformanceMetrics, Status, utcnow
from ..utils.log_common import build_logger
from ..utils.timing import Stopwatch

logger = build_logger("probe")


class ProbeKind(str, Enum):
    CONNECTION = "connection"
    CACHE = "cache"
    ASSET_DELIVERY = "asset_delivery"
    QUERY = "query"
    SCHEMA = "schema"
    CONSISTENCY = "consistency"
    SUBSYSTEM = "subsystem"


@dataclass
class ProbeOutcome:
    """What a probe's ``check`` found; status is derived from the issues."""

    issues: List[Issue] = field(default_factory=list)
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    endpoint: Optional[str] = None


def derive_status(issues: Sequence[Issue]) -> Status:
    """Any critical issue wins, then any warning, else healthy."""
    if any(i.status == Status.CRITICAL for i in issues):
        return Status.CRITICAL
    if any(i.status == Status.WARNING for i in issues):
        return Status.WARNING
    return Status.HEALTHY


def failed_component(
    name: str, dependencies: Sequence[str], cause: str, endpoint: Optional[str] = None
) -> ComponentHealth:
    return ComponentHealth(
        component_name=name,
        status=Status.CRITICAL,
        dependencies=list(dependencies),
        performance=PerformanceMetrics(),
        issues=[
            Issue(
                status=Status.CRITICAL,
                message=f"probe failed: {cause}",
                suggestions=["Check service availability", "Review configuration"],
            )
        ],
        last_checked=utcnow(),
        endpoint=endpoint,
    )


def timed_out_component(
    name: str, dependencies: Sequence[str], timeout: float, endpoint: Optional[str] = None
) -> ComponentHealth:
    return ComponentHealth(
        component_name=name,
        status=Status.CRITICAL,
        dependencies=list(dependencies),
        performance=PerformanceMetrics(),
        issues=[
            Issue(
                status=Status.CRITICAL,
                message=f"probe timed out after {timeout:g}s",
                suggestions=["Check backend latency", "Raise the probe timeout if the backend is known to be slow"],
            )
        ],
        last_checked=utcnow(),
        endpoint=endpoint,
        indeterminate=True,
    )


class ProbeBase(ABC):
    """
    Base class for all component probes.

    Subclasses implement ``check``; callers use ``probe``, which applies the
    timeout, derives the status and never raises for backend or probe faults.
    Cancellation is propagated.
    """

    name: str
    kind: ProbeKind
    dependencies: Sequence[str] = ()
    endpoint: Optional[str] = None

    def __init__(self, timeout: float = 5.0, metrics: Optional[EngineMetrics] = None):
        self.timeout = timeout
        self.metrics = metrics

    @abstractmethod
    async def check(self) -> ProbeOutcome:
        """Run the backend calls and report issues and performance."""
        ...

    async def probe(self) -> ComponentHealth:
        sw = Stopwatch().start()
        try:
            outcome = await asyncio.wait_for(self.check(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"[{self.name}] timed out after {self.timeout:g}s")
            health = timed_out_component(
                self.name, self.dependencies, self.timeout, self.endpoint
            )
        except Exception as e:
            logger.error(f"[{self.name}] probe failed: {type(e).__name__}: {e}")
            health = failed_component(
                self.name, self.dependencies, f"{type(e).__name__}: {e}", self.endpoint
            )
        else:
            health = ComponentHealth(
                component_name=self.name,
                status=derive_status(outcome.issues),
                dependencies=list(self.dependencies),
                performance=outcome.performance,
                issues=list(outcome.issues),
                last_checked=utcnow(),
                endpoint=outcome.endpoint or self.endpoint,
            )
            if health.status == Status.CRITICAL:
                logger.error(f"[{self.name}] critical: {self._first_message(health)}")
            elif health.status == Status.WARNING:
                logger.warning(f"[{self.name}] degraded: {self._first_message(health)}")
            else:
                logger.debug(f"[{self.name}] ok")
        sw.stop()

        if self.metrics is not None:
            self.metrics.record_probe(self.name, health.status.value, sw.elapsed * 1000)
        return health

    @staticmethod
    def _first_message(health: ComponentHealth) -> str:
        return health.issues[0].message if health.issues else ""
