from ...clients.content_store import ContentStoreClient
from ...schemas.health import Issue, PerformanceMetrics, Status
from ...utils.timing import Stopwatch
from ..base import ProbeBase, ProbeKind, ProbeOutcome

ASSET_QUERY = """
*[_type == "sanity.imageAsset"][0]{
  _id,
  url,
  metadata { dimensions { width, height } }
}
"""


class AssetDeliveryProbe(ProbeBase):
    """
    Asset CDN delivery.

    Looks up the first image asset and issues a HEAD against its url. No
    asset at all is a warning, a non-2xx answer is critical, a HEAD slower
    than ``slow_ms`` is a warning.
    """

    name = "assets"
    kind = ProbeKind.ASSET_DELIVERY
    dependencies = ("connection",)

    def __init__(self, client: ContentStoreClient, slow_ms: float = 3000.0, **kwargs):  # noqa: D107
        super().__init__(**kwargs)
        self.client = client
        self.slow_ms = slow_ms

    async def check(self) -> ProbeOutcome:
        """Check that a sample asset is served by the CDN."""
        try:
            asset = await self.client.fetch(ASSET_QUERY)
        except Exception as e:
            return ProbeOutcome(
                issues=[
                    Issue(
                        status=Status.CRITICAL,
                        message=f"Asset delivery check failed: {e}",
                        suggestions=[
                            "Check asset upload functionality",
                            "Verify content store configuration",
                            "Review CDN settings",
                        ],
                    )
                ],
                performance=PerformanceMetrics(error_rate=1.0),
            )

        if not asset or not isinstance(asset, dict) or not asset.get("url"):
            return ProbeOutcome(
                issues=[
                    Issue(
                        status=Status.WARNING,
                        message="No assets found in the content store",
                        suggestions=["Upload test assets", "Verify asset upload process"],
                    )
                ]
            )

        url = asset["url"]
        with Stopwatch() as sw:
            try:
                resp = await self.client.head(url)
            except Exception as e:
                return ProbeOutcome(
                    issues=[
                        Issue(
                            status=Status.CRITICAL,
                            message=f"Asset delivery failed: {e}",
                            suggestions=["Check CDN configuration", "Verify network connectivity"],
                        )
                    ],
                    performance=PerformanceMetrics(error_rate=1.0),
                    endpoint=url,
                )

        if not resp.is_success:
            return ProbeOutcome(
                issues=[
                    Issue(
                        status=Status.CRITICAL,
                        message=f"Asset delivery failed: HTTP {resp.status_code}",
                        suggestions=[
                            "Check CDN configuration",
                            "Verify asset permissions",
                            "Review asset settings",
                        ],
                    )
                ],
                performance=PerformanceMetrics(
                    average_response_time_ms=float(sw.elapsed_ms), error_rate=1.0
                ),
                endpoint=url,
            )

        issues = []
        if sw.elapsed_ms > self.slow_ms:
            issues.append(
                Issue(
                    status=Status.WARNING,
                    message=f"Asset delivery is slow ({sw.elapsed_ms}ms > {self.slow_ms:g}ms)",
                    suggestions=["Review CDN caching headers", "Check CDN edge health"],
                )
            )
        return ProbeOutcome(
            issues=issues,
            performance=PerformanceMetrics(average_response_time_ms=float(sw.elapsed_ms)),
            endpoint=url,
        )
