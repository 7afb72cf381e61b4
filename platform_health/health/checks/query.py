from dataclasses import dataclass
from typing import Sequence

from ...clients.content_store import ContentStoreClient
from ...schemas.health import Issue, PerformanceMetrics, Status
from ...utils.timing import Stopwatch
from ..base import ProbeBase, ProbeKind, ProbeOutcome


@dataclass(frozen=True)
class CriticalQuery:
    name: str
    query: str
    threshold_ms: float


DEFAULT_QUERIES = (
    CriticalQuery("Product Listings", '*[_type == "product"][0...5]{_id, title, price}', 1000),
    CriticalQuery("User Authentication", '*[_type == "user"][0]{_id, name, email}', 500),
    CriticalQuery("Category Listing", '*[_type == "category"]{_id, name, slug}', 800),
    CriticalQuery("License Validation", '*[_type == "license"][0]{_id, status, downloadCount}', 600),
)


class QueryProbe(ProbeBase):
    """
    Query layer performance.

    Runs each critical query in order. A query slower than its own threshold
    is a warning, a failing query is critical. ``error_rate`` is the share
    of failed queries and the average covers the successful ones.
    """

    name = "queries"
    kind = ProbeKind.QUERY
    dependencies = ("connection",)

    def __init__(  # noqa: D107
        self,
        client: ContentStoreClient,
        queries: Sequence[CriticalQuery] = DEFAULT_QUERIES,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client = client
        self.queries = tuple(queries)

    async def check(self) -> ProbeOutcome:
        issues = []
        timings = []
        failures = 0

        for item in self.queries:
            with Stopwatch() as sw:
                try:
                    await self.client.fetch(item.query)
                    error = None
                except Exception as e:
                    error = e

            if error is not None:
                failures += 1
                issues.append(
                    Issue(
                        status=Status.CRITICAL,
                        message=f"{item.name}: query failed: {error}",
                        suggestions=[
                            "Check query syntax",
                            "Verify schema compatibility",
                            "Review data availability",
                        ],
                    )
                )
                continue

            timings.append(sw.elapsed_ms)
            if sw.elapsed_ms > item.threshold_ms:
                issues.append(
                    Issue(
                        status=Status.WARNING,
                        message=(
                            f"{item.name}: query is slower than expected "
                            f"({sw.elapsed_ms}ms > {item.threshold_ms:g}ms)"
                        ),
                        suggestions=[
                            "Consider query optimization",
                            "Add appropriate indexes",
                            "Review query complexity",
                        ],
                    )
                )

        total = len(self.queries)
        return ProbeOutcome(
            issues=issues,
            performance=PerformanceMetrics(
                average_response_time_ms=sum(timings) / len(timings) if timings else 0.0,
                error_rate=failures / total if total else 0.0,
            ),
        )
