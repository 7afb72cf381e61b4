from dataclasses import dataclass
from typing import Sequence

from ...clients.content_store import ContentStoreClient
from ...schemas.health import Issue, PerformanceMetrics, Status
from ...utils.timing import Stopwatch
from ..base import ProbeBase, ProbeKind, ProbeOutcome


@dataclass(frozen=True)
class RelationCheck:
    name: str
    query: str


DEFAULT_RELATIONS = (
    RelationCheck("Product-Category Relations", 'count(*[_type == "product" && !defined(categories)])'),
    RelationCheck("License-Order Relations", 'count(*[_type == "license" && !defined(order)])'),
    RelationCheck("User-License Relations", 'count(*[_type == "license" && !defined(user)])'),
)


class ConsistencyProbe(ProbeBase):
    """Orphaned references between document types; any orphan is a warning."""

    name = "consistency"
    kind = ProbeKind.CONSISTENCY
    dependencies = ("connection",)

    def __init__(  # noqa: D107
        self,
        client: ContentStoreClient,
        relations: Sequence[RelationCheck] = DEFAULT_RELATIONS,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client = client
        self.relations = tuple(relations)

    async def check(self) -> ProbeOutcome:
        issues = []
        timings = []
        failures = 0

        for relation in self.relations:
            with Stopwatch() as sw:
                try:
                    orphans = await self.client.fetch(relation.query)
                except Exception as e:
                    failures += 1
                    issues.append(
                        Issue(
                            status=Status.CRITICAL,
                            message=f"{relation.name}: consistency check failed: {e}",
                            suggestions=[
                                "Check query permissions",
                                "Verify schema structure",
                                "Review data integrity",
                            ],
                        )
                    )
                    continue
            timings.append(sw.elapsed_ms)

            if isinstance(orphans, bool) or not isinstance(orphans, int):
                issues.append(
                    Issue(
                        status=Status.WARNING,
                        message=f"{relation.name}: could not read orphan count ({orphans!r})",
                        suggestions=["Verify schema structure"],
                    )
                )
            elif orphans > 0:
                issues.append(
                    Issue(
                        status=Status.WARNING,
                        message=f"{relation.name}: {orphans} orphaned documents",
                        suggestions=[
                            "Review data migration scripts",
                            "Implement data validation",
                            "Clean up orphaned records",
                        ],
                    )
                )

        total = len(self.relations)
        return ProbeOutcome(
            issues=issues,
            performance=PerformanceMetrics(
                average_response_time_ms=sum(timings) / len(timings) if timings else 0.0,
                error_rate=failures / total if total else 0.0,
            ),
        )
