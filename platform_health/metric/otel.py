from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.metrics import set_meter_provider
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

METER_NAME = "platform_health"


def setup_metrics(
    service_name: str,
    otlp_endpoint: str = "grpc://otel-collector:4317",
    otlp_insecure: bool = False,
    export_interval_millis: int = 5000,
) -> MeterProvider:
    """
    Export engine metrics to an OTLP collector.

    Until this is called the instruments below record into the no-op
    provider of the OpenTelemetry API.
    """
    resource = Resource.create({SERVICE_NAME: service_name})
    otlp_exporter = OTLPMetricExporter(endpoint=otlp_endpoint, insecure=otlp_insecure)
    reader = PeriodicExportingMetricReader(
        otlp_exporter, export_interval_millis=export_interval_millis
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    set_meter_provider(meter_provider)
    return meter_provider


class EngineMetrics:
    """Instruments for probe, aggregation and diagnostic-test outcomes."""

    def __init__(self, meter: metrics.Meter | None = None):
        meter = meter or metrics.get_meter(METER_NAME)
        self.probe_duration = meter.create_histogram(
            "platform_health.probe.duration",
            unit="ms",
            description="Probe run time per component",
        )
        self.aggregation_duration = meter.create_histogram(
            "platform_health.aggregation.duration",
            unit="ms",
            description="Snapshot fan-out time per mode",
        )
        self.snapshot_score = meter.create_histogram(
            "platform_health.snapshot.score",
            description="Overall health score of each computed snapshot",
        )
        self.cache_lookups = meter.create_counter(
            "platform_health.cache.lookups",
            description="Snapshot cache lookups by mode and outcome",
        )
        self.test_runs = meter.create_counter(
            "platform_health.test.runs",
            description="Diagnostic test runs by component, type and outcome",
        )

    def record_probe(self, component: str, status: str, duration_ms: float) -> None:
        self.probe_duration.record(
            duration_ms, {"component": component, "status": status}
        )

    def record_aggregation(self, mode: str, score: int, duration_ms: float) -> None:
        self.aggregation_duration.record(duration_ms, {"mode": mode})
        self.snapshot_score.record(score, {"mode": mode})

    def record_cache_lookup(self, mode: str, hit: bool) -> None:
        self.cache_lookups.add(1, {"mode": mode, "outcome": "hit" if hit else "miss"})

    def record_test(self, component: str, test_type: str, success: bool) -> None:
        self.test_runs.add(
            1,
            {"component": component, "test_type": test_type, "success": str(success).lower()},
        )
