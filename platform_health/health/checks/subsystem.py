"""Per-subsystem health: each platform API is checked through the queries it depends on."""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Sequence

from ...clients.content_store import ContentStoreClient
from ...schemas.health import Issue, PerformanceMetrics, Status
from ...utils.log_common import build_logger
from ...utils.timing import Stopwatch
from ..base import ProbeBase, ProbeKind, ProbeOutcome
from .query import CriticalQuery

logger = build_logger("subsystem")

PUBLISHED = '!(_id in path("drafts.**"))'


@dataclass(frozen=True)
class Subsystem:
    """
    A platform subsystem and the content it relies on.

    ``dependencies`` are the document types the subsystem reads,
    ``queries`` are run on every check and ``metrics`` (label to query) are
    only fetched for a detailed lookup.
    """

    key: str
    title: str
    endpoint: str
    dependencies: Sequence[str]
    queries: Sequence[CriticalQuery]
    metrics: Mapping[str, str] = field(default_factory=dict)


SUBSYSTEMS = (
    Subsystem(
        key="products_api",
        title="Products API",
        endpoint="/api/products",
        dependencies=("product", "category", "author"),
        queries=(
            CriticalQuery("product listings", '*[_type == "product"][0...5]{_id}', 1000),
            CriticalQuery("product details", '*[_type == "product"][0]{_id, title, slug, price}', 800),
            CriticalQuery("category filtering", '*[_type == "product" && defined(categories)][0...5]{_id}', 1000),
        ),
        metrics={
            "total_products": 'count(*[_type == "product"])',
            "published_products": f'count(*[_type == "product" && {PUBLISHED}])',
            "featured_products": 'count(*[_type == "product" && featured == true])',
            "products_with_images": 'count(*[_type == "product" && defined(images[0])])',
            "average_price": 'math::avg(*[_type == "product"].price)',
        },
    ),
    Subsystem(
        key="users_api",
        title="User Management",
        endpoint="/api/user/profile",
        dependencies=("user", "userBehavior"),
        queries=(
            CriticalQuery("user profiles", '*[_type == "user"][0]{_id, name}', 500),
            CriticalQuery("user preferences", '*[_type == "userBehavior"][0]{_id}', 800),
        ),
        metrics={
            "total_users": 'count(*[_type == "user"])',
            "active_users": 'count(*[_type == "user" && defined(lastLoginAt)])',
            "partners": 'count(*[_type == "user" && partner == true])',
        },
    ),
    Subsystem(
        key="partner_api",
        title="Partner System",
        endpoint="/api/partner/upload",
        dependencies=("partnerAsset", "partnerApplication"),
        queries=(
            CriticalQuery("partner verification", '*[_type == "partnerApplication"][0]{_id, status}', 800),
            CriticalQuery("asset management", '*[_type == "partnerAsset"][0...5]{_id}', 1000),
        ),
        metrics={
            "total_partners": 'count(*[_type == "user" && partner == true])',
            "total_uploads": 'count(*[_type == "partnerAsset"])',
            "total_file_size": 'sum(*[_type == "partnerAsset"].fileSize)',
        },
    ),
    Subsystem(
        key="licenses_api",
        title="License Management",
        endpoint="/api/user/licenses",
        dependencies=("license", "accessPass", "order"),
        queries=(
            CriticalQuery("license validation", '*[_type == "license"][0]{_id, status}', 600),
            CriticalQuery("download tracking", '*[_type == "license"][0]{_id, downloadCount}', 800),
            CriticalQuery("access verification", '*[_type == "accessPass"][0]{_id}', 800),
        ),
        metrics={
            "total_licenses": 'count(*[_type == "license"])',
            "active_licenses": 'count(*[_type == "license" && status == "active"])',
            "expired_licenses": 'count(*[_type == "license" && status == "expired"])',
            "total_downloads": 'sum(*[_type == "license"].downloadCount)',
        },
    ),
    Subsystem(
        key="analytics_api",
        title="Analytics System",
        endpoint="/api/dashboard/stats",
        dependencies=("userBehavior", "order", "license"),
        queries=(
            CriticalQuery("user behavior tracking", '*[_type == "userBehavior"][0...5]{_id}', 1000),
            CriticalQuery("revenue analytics", '*[_type == "order"][0...5]{_id, total}', 1000),
        ),
        metrics={
            "total_behavior_events": 'count(*[_type == "userBehavior"])',
            "total_orders": 'count(*[_type == "order"])',
            "total_revenue": 'sum(*[_type == "order"].total)',
        },
    ),
    Subsystem(
        key="content_api",
        title="Content Management",
        endpoint="/api/categories",
        dependencies=("category", "author", "product"),
        queries=(
            CriticalQuery("category organization", '*[_type == "category"]{_id, slug}', 800),
            CriticalQuery("author profiles", '*[_type == "author"][0...5]{_id, name}', 800),
        ),
        metrics={
            "total_documents": f"count(*[{PUBLISHED}])",
            "total_assets": 'count(*[_type in ["sanity.fileAsset", "sanity.imageAsset"]])',
            "last_modified": f"*[{PUBLISHED}] | order(_updatedAt desc)[0]._updatedAt",
        },
    ),
)


class SubsystemProbe(ProbeBase):
    """
    Health of one platform subsystem.

    The component is named after the subsystem key and lists the document
    types it reads as dependencies. A failing query is critical, a query
    slower than its threshold is a warning and ``error_rate`` is the share
    of failed queries.
    """

    kind = ProbeKind.SUBSYSTEM

    def __init__(self, client: ContentStoreClient, subsystem: Subsystem, **kwargs):  # noqa: D107
        super().__init__(**kwargs)
        self.client = client
        self.subsystem = subsystem
        self.name = subsystem.key
        self.dependencies = tuple(subsystem.dependencies)
        self.endpoint = subsystem.endpoint

    async def check(self) -> ProbeOutcome:
        issues = []
        timings = []
        failures = 0

        for item in self.subsystem.queries:
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
                        message=f"{self.subsystem.title}: {item.name} failed: {error}",
                        suggestions=[
                            "Check component dependencies",
                            f"Verify the {', '.join(self.dependencies)} schemas",
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
                            f"{self.subsystem.title}: {item.name} is slow "
                            f"({sw.elapsed_ms}ms > {item.threshold_ms:g}ms)"
                        ),
                        suggestions=["Review query complexity"],
                    )
                )

        total = len(self.subsystem.queries)
        return ProbeOutcome(
            issues=issues,
            performance=PerformanceMetrics(
                average_response_time_ms=sum(timings) / len(timings) if timings else 0.0,
                error_rate=failures / total if total else 0.0,
            ),
        )

    async def detailed_metrics(self) -> Dict[str, Any]:
        """
        Fetch the subsystem's count metrics.

        A failing metric query does not raise; the result then carries an
        ``error`` entry instead of the counts.
        """
        metrics: Dict[str, Any] = {}
        try:
            for label, query in self.subsystem.metrics.items():
                metrics[label] = await self.client.fetch(query)
        except Exception as e:
            logger.warning(f"[{self.name}] detailed metrics failed: {e}")
            return {"error": "Failed to load detailed metrics", "details": str(e)}
        return metrics
