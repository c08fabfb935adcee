"""Evaluation result schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from evalgate.models.common import ensure_utc, utc_now


class DatasetKind(str, Enum):
    """Origin of an evaluation dataset."""

    REFERENCE = "reference"
    LIVE = "live"


class FailureKind(str, Enum):
    """Why an evaluator did not produce a metric set."""

    TIMEOUT = "Timeout"
    ERROR = "Error"
    INVALID_RESULT = "InvalidResult"


class MetricSet(BaseModel):
    """Metric values produced by one evaluator over one dataset for one system version."""

    model_config = ConfigDict(frozen=True)

    evaluator_name: str
    evaluator_version: str
    dataset_id: str
    system_version: str
    metrics: dict[str, float] = Field(default_factory=dict)
    computed_at: datetime = Field(default_factory=utc_now)
    window_start: datetime | None = None
    window_end: datetime | None = None

    @field_validator("computed_at", "window_start", "window_end")
    @classmethod
    def _normalize(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class TrendRecord(BaseModel):
    """A metric set plus the time window it summarizes."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    metric_set: MetricSet
    window_start: datetime
    window_end: datetime

    @field_validator("window_start", "window_end")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_window(self) -> "TrendRecord":
        if self.window_end < self.window_start:
            raise ValueError("window_end precedes window_start")
        return self

    @property
    def dataset_id(self) -> str:
        return self.metric_set.dataset_id

    def value(self, metric_name: str) -> float | None:
        return self.metric_set.metrics.get(metric_name)


class EvaluatorFailure(BaseModel):
    """A single evaluator that failed during a run."""

    evaluator_name: str
    evaluator_version: str | None = None
    kind: FailureKind
    detail: str = ""


class PartialFailureReport(BaseModel):
    """Signals that some but not all evaluators in a run succeeded."""

    run_id: str
    failures: list[EvaluatorFailure] = Field(default_factory=list)
    succeeded: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> list[str]:
        return [f.evaluator_name for f in self.failures]


class RunResult(BaseModel):
    """Outcome of one evaluation run."""

    run_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    dataset_id: str
    system_version: str
    metric_sets: list[MetricSet] = Field(default_factory=list)
    failure_report: PartialFailureReport | None = None

    @property
    def is_partial(self) -> bool:
        return self.failure_report is not None


class MetricEntry(BaseModel):
    """One metric value as it appears in an evaluation report."""

    evaluator_name: str
    evaluator_version: str
    metric_name: str
    value: float


class FailureEntry(BaseModel):
    """One failed evaluator as it appears in an evaluation report."""

    evaluator_name: str
    kind: FailureKind
    detail: str = ""


class EvaluationReport(BaseModel):
    """Structured report of an evaluation run."""

    run_id: str
    timestamp: datetime
    dataset_id: str
    system_version: str
    metrics: list[MetricEntry] = Field(default_factory=list)
    failures: list[FailureEntry] = Field(default_factory=list)


class DegradationPolicy(BaseModel):
    """
    Degradation rule: current window below the Nth percentile of the trailing K windows.

    With higher_is_better=False the comparison flips to above the (100 - N)th percentile.
    """

    model_config = ConfigDict(frozen=True)

    percentile: float = Field(default=10.0, gt=0.0, lt=100.0)
    trailing_windows: int = Field(default=5, ge=1)
    higher_is_better: bool = True
    min_history: int = Field(default=1, ge=1)


class DegradationAlert(BaseModel):
    """A threshold breach raised by degradation detection."""

    metric_name: str
    dataset_id: str
    current_value: float
    baseline_value: float
    window_start: datetime
    policy: DegradationPolicy
    raised_at: datetime = Field(default_factory=utc_now)


class ConfidenceInterval(BaseModel):
    """Statistical confidence interval."""

    value: float
    lower: float
    upper: float
    confidence_level: float = 0.95
    sample_size: int


class TrendSummary(BaseModel):
    """Descriptive statistics over a metric's trend records."""

    metric_name: str
    dataset_id: str
    window_count: int
    latest: float | None = None
    mean: ConfidenceInterval
    std: float = 0.0
    min: float | None = None
    max: float | None = None
