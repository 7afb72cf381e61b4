import csv
import io
import json
from datetime import datetime, timezone

import pytest

from platform_health.exceptions import RequestValidationError
from platform_health.health.manager import build_snapshot
from platform_health.schemas.health import (
    ExportType,
    HealthSnapshot,
    Issue,
    PerformanceMetrics,
    SnapshotMode,
    Status,
)
from platform_health.utils.export import CSV_COLUMNS, ExportFormatter

from .conftest import component

CHECKED = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def snapshot() -> HealthSnapshot:
    return build_snapshot(
        SnapshotMode.FULL,
        [
            component(
                "cache",
                performance=PerformanceMetrics(
                    average_response_time_ms=3.0, cache_hit_rate=0.82
                ),
                last_checked=CHECKED,
            ),
            component(
                "queries",
                Status.WARNING,
                issues=[
                    Issue(
                        status=Status.WARNING,
                        message='Product Listings: slow, "1200ms"',
                        suggestions=["Add appropriate indexes"],
                    )
                ],
                performance=PerformanceMetrics(average_response_time_ms=1200.0, error_rate=0.25),
                last_checked=CHECKED,
            ),
            component("odd, name", last_checked=CHECKED),
        ],
        timestamp=CHECKED,
    )


def test_json_round_trip(snapshot):
    data = ExportFormatter().format(snapshot, "json")
    restored = HealthSnapshot.model_validate(json.loads(data))

    assert restored == snapshot


def test_json_uses_snake_case(snapshot):
    data = json.loads(ExportFormatter().to_json(snapshot))

    assert data["summary"]["issue_count"] == 1
    assert data["components"][0]["component_name"] == "cache"
    assert data["components"][0]["performance"]["cache_hit_rate"] == 0.82


def test_csv_rows(snapshot):
    text = ExportFormatter().format(snapshot, ExportType.CSV).decode("utf-8")
    rows = list(csv.reader(io.StringIO(text, newline="")))

    assert tuple(rows[0]) == CSV_COLUMNS
    assert rows[1] == ["cache", "healthy", "3.0", "0.0", "0.82", "0", CHECKED.isoformat()]
    assert rows[2][0] == "odd, name"
    assert rows[2][4] == ""
    assert rows[3][:2] == ["queries", "warning"]
    assert rows[3][5] == "1"
    assert text.endswith("\r\n")


def test_csv_quotes_commas(snapshot):
    text = ExportFormatter().to_csv(snapshot).decode("utf-8")
    assert '"odd, name"' in text


def test_empty_snapshot_csv_has_header_only():
    snapshot = build_snapshot(SnapshotMode.QUICK, [], timestamp=CHECKED)
    text = ExportFormatter().to_csv(snapshot).decode("utf-8")
    assert text == ",".join(CSV_COLUMNS) + "\r\n"


def test_content_type_and_filename(snapshot):
    formatter = ExportFormatter()
    assert formatter.content_type("csv") == "text/csv; charset=utf-8"
    assert formatter.content_type(ExportType.JSON) == "application/json"
    assert formatter.filename(snapshot, "csv") == "health-full-20250301T120000Z.csv"


def test_unknown_format(snapshot):
    with pytest.raises(RequestValidationError, match="invalid export format 'xml'"):
        ExportFormatter().format(snapshot, "xml")
