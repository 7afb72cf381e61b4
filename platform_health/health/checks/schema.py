from typing import Sequence

from ...clients.content_store import ContentStoreClient
from ...schemas.health import Issue, PerformanceMetrics, Status
from ...utils.timing import Stopwatch
from ..base import ProbeBase, ProbeKind, ProbeOutcome

EXPECTED_SCHEMAS = (
    "product",
    "user",
    "category",
    "author",
    "order",
    "license",
    "accessPass",
    "partnerAsset",
    "userBehavior",
)
REQUIRED_NON_EMPTY = ("product", "user", "category")


class SchemaProbe(ProbeBase):
    """
    Schema store sanity.

    Counts the documents of every expected type. A failing count or a
    non-integer answer is critical; an empty type listed in
    ``required_non_empty`` is a warning.
    """

    name = "schemas"
    kind = ProbeKind.SCHEMA
    dependencies = ("connection",)

    def __init__(  # noqa: D107
        self,
        client: ContentStoreClient,
        schema_types: Sequence[str] = EXPECTED_SCHEMAS,
        required_non_empty: Sequence[str] = REQUIRED_NON_EMPTY,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.client = client
        self.schema_types = tuple(schema_types)
        self.required_non_empty = frozenset(required_non_empty)

    async def check(self) -> ProbeOutcome:
        issues = []
        timings = []
        failures = 0

        for schema_type in self.schema_types:
            with Stopwatch() as sw:
                try:
                    count = await self.client.fetch(
                        "count(*[_type == $type])", {"type": schema_type}
                    )
                    error = None
                except Exception as e:
                    error = e

            if error is None and (isinstance(count, bool) or not isinstance(count, int)):
                error = ValueError(f"expected a document count, got {count!r}")

            if error is not None:
                failures += 1
                issues.append(
                    Issue(
                        status=Status.CRITICAL,
                        message=f"Schema {schema_type}: validation failed: {error}",
                        suggestions=[
                            "Check the schema definition in the studio",
                            "Verify schema migration",
                            "Review document structure",
                        ],
                    )
                )
                continue

            timings.append(sw.elapsed_ms)
            if count == 0 and schema_type in self.required_non_empty:
                issues.append(
                    Issue(
                        status=Status.WARNING,
                        message=f"Schema {schema_type}: no documents found",
                        suggestions=["Seed initial content", "Verify the dataset name"],
                    )
                )

        total = len(self.schema_types)
        return ProbeOutcome(
            issues=issues,
            performance=PerformanceMetrics(
                average_response_time_ms=sum(timings) / len(timings) if timings else 0.0,
                error_rate=failures / total if total else 0.0,
            ),
        )
