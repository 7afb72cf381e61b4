import csv
import io
from typing import Union

from ..exceptions import RequestValidationError
from ..schemas.health import ExportType, HealthSnapshot
from .serialization import serialize_to_json

CSV_COLUMNS = (
    "component_name",
    "status",
    "average_response_time_ms",
    "error_rate",
    "cache_hit_rate",
    "issue_count",
    "last_checked",
)

CONTENT_TYPES = {
    ExportType.JSON: "application/json",
    ExportType.CSV: "text/csv; charset=utf-8",
}


def _coerce_type(export_type: Union[ExportType, str]) -> ExportType:
    try:
        return ExportType(export_type)
    except ValueError:
        valid = ", ".join(t.value for t in ExportType)
        raise RequestValidationError(
            f"invalid export format '{export_type}', expected one of: {valid}"
        )


class ExportFormatter:
    """
    Serialize snapshots for download.

    JSON is the full snapshot structure. CSV has one row per component; cells
    are quoted by ``csv.writer`` so commas, quotes and newlines survive.
    """

    def format(self, snapshot: HealthSnapshot, export_type: Union[ExportType, str]) -> bytes:
        export_type = _coerce_type(export_type)
        if export_type == ExportType.JSON:
            return self.to_json(snapshot)
        return self.to_csv(snapshot)

    def to_json(self, snapshot: HealthSnapshot) -> bytes:
        return serialize_to_json(snapshot.model_dump(mode="json"), indent=2).encode("utf-8")

    def to_csv(self, snapshot: HealthSnapshot) -> bytes:
        buffer = io.StringIO(newline="")
        writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
        writer.writerow(CSV_COLUMNS)
        for component in snapshot.components:
            perf = component.performance
            writer.writerow(
                [
                    component.component_name,
                    component.status.value,
                    perf.average_response_time_ms,
                    perf.error_rate,
                    "" if perf.cache_hit_rate is None else perf.cache_hit_rate,
                    len(component.issues),
                    component.last_checked.isoformat(),
                ]
            )
        return buffer.getvalue().encode("utf-8")

    @staticmethod
    def content_type(export_type: Union[ExportType, str]) -> str:
        return CONTENT_TYPES[_coerce_type(export_type)]

    @staticmethod
    def filename(snapshot: HealthSnapshot, export_type: Union[ExportType, str]) -> str:
        export_type = _coerce_type(export_type)
        stamp = snapshot.timestamp.strftime("%Y%m%dT%H%M%SZ")
        return f"health-{snapshot.mode.value}-{stamp}.{export_type.value}"
