from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Status(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class SnapshotMode(str, Enum):
    QUICK = "quick"
    FULL = "full"


class ExportType(str, Enum):
    JSON = "json"
    CSV = "csv"


class TestType(str, Enum):
    CONNECTIVITY = "connectivity"
    PERFORMANCE = "performance"
    DATA_INTEGRITY = "data_integrity"
    CUSTOM = "custom"


class Issue(BaseModel):
    """One problem detected within a component."""

    model_config = ConfigDict(frozen=True)

    status: Status
    message: str
    suggestions: List[str] = Field(default_factory=list)

    @field_validator("status")
    @classmethod
    def _not_healthy(cls, value: Status) -> Status:
        if value == Status.HEALTHY:
            raise ValueError("issues must be warning or critical")
        return value


class PerformanceMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    average_response_time_ms: float = Field(default=0.0, ge=0)
    error_rate: float = Field(default=0.0, ge=0, le=1)
    cache_hit_rate: Optional[float] = Field(default=None, ge=0, le=1)


class ComponentHealth(BaseModel):
    """
    Current state of one monitored component.

    ``indeterminate`` marks a component whose probe did not answer within its
    timeout; it is reported as critical but scored as 50.
    """

    model_config = ConfigDict(frozen=True)

    component_name: str
    status: Status
    dependencies: List[str] = Field(default_factory=list)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    issues: List[Issue] = Field(default_factory=list)
    last_checked: datetime = Field(default_factory=utcnow)
    endpoint: Optional[str] = None
    indeterminate: bool = False


class HealthSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Status
    message: str
    issue_count: int = Field(ge=0)
    critical_issues: int = Field(ge=0)
    warning_issues: int = Field(ge=0)

    @model_validator(mode="after")
    def _counts_add_up(self):
        if self.issue_count != self.critical_issues + self.warning_issues:
            raise ValueError("issue_count must equal critical_issues + warning_issues")
        return self


class HealthSnapshot(BaseModel):
    """One immutable aggregation pass across the probed components."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    mode: SnapshotMode
    components: List[ComponentHealth]
    summary: HealthSummary
    score: int = Field(ge=0, le=100)

    @field_validator("components")
    @classmethod
    def _unique_names(cls, value: List[ComponentHealth]) -> List[ComponentHealth]:
        names = [c.component_name for c in value]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate component names: {', '.join(duplicates)}")
        return value

    def component(self, name: str) -> Optional[ComponentHealth]:
        for item in self.components:
            if item.component_name == name:
                return item
        return None

    @property
    def partial(self) -> bool:
        """True when at least one probe timed out."""
        return any(c.indeterminate for c in self.components)


class TestRequest(BaseModel):
    __test__ = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    component_name: str = Field(min_length=1)
    test_type: TestType
    custom_query: Optional[str] = None

    @model_validator(mode="after")
    def _custom_query_iff_custom(self):
        if self.test_type == TestType.CUSTOM:
            if self.custom_query is None or not self.custom_query.strip():
                raise ValueError("custom_query is required when test_type is 'custom'")
        elif self.custom_query is not None:
            raise ValueError("custom_query is only allowed when test_type is 'custom'")
        return self


class TestResult(BaseModel):
    __test__ = False

    model_config = ConfigDict(frozen=True)

    component_name: str
    test_type: TestType
    success: bool
    message: str
    duration_ms: int = Field(ge=0)
    start_time: datetime
    end_time: datetime
    response_time: Optional[int] = Field(default=None, ge=0)
    details: Dict[str, Any] = Field(default_factory=dict)
    timed_out: bool = False
