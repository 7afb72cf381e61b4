from ...clients.content_store import ContentStoreClient
from ...schemas.health import Issue, PerformanceMetrics, Status
from ...utils.timing import Stopwatch
from ..base import ProbeBase, ProbeKind, ProbeOutcome

CONNECTION_QUERY = '*[_type == "sanity.imageAsset"][0]{_id}'


class ConnectionProbe(ProbeBase):
    """
    Round trip to the content store.

    A query error is critical; a response slower than ``slow_ms`` is a
    warning.
    """

    name = "connection"
    kind = ProbeKind.CONNECTION

    def __init__(self, client: ContentStoreClient, slow_ms: float = 1000.0, **kwargs):  # noqa: D107
        super().__init__(**kwargs)
        self.client = client
        self.slow_ms = slow_ms
        self.endpoint = client.query_url

    async def check(self) -> ProbeOutcome:
        """Check content store connectivity."""
        issues = []
        with Stopwatch() as sw:
            try:
                await self.client.fetch(CONNECTION_QUERY)
                failed = False
            except Exception as e:
                failed = True
                issues.append(
                    Issue(
                        status=Status.CRITICAL,
                        message=f"Connection failed: {e}",
                        suggestions=[
                            "Check content store API credentials",
                            "Verify network connectivity",
                            "Check content store service status",
                        ],
                    )
                )

        if not failed and sw.elapsed_ms > self.slow_ms:
            issues.append(
                Issue(
                    status=Status.WARNING,
                    message=f"Connection is slow but functional ({sw.elapsed_ms}ms > {self.slow_ms:g}ms)",
                    suggestions=["Check network connectivity", "Consider CDN optimization"],
                )
            )

        return ProbeOutcome(
            issues=issues,
            performance=PerformanceMetrics(
                average_response_time_ms=0.0 if failed else float(sw.elapsed_ms),
                error_rate=1.0 if failed else 0.0,
            ),
        )
