"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from evalgate.models.common import ensure_utc
from evalgate.models.evaluation import (
    DatasetKind,
    EvaluationReport,
    TrendRecord,
    TrendSummary,
)
from evalgate.models.events import EventType
from evalgate.models.scoring import ScoredOutput


# ============================================
# Request Schemas
# ============================================

class SessionCreateRequest(BaseModel):
    """Request to open a new interaction session."""

    input_payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque structured input of the interaction"
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Caller-supplied ID (generated when omitted)"
    )
    created_at: Optional[datetime] = None


class EventAppendRequest(BaseModel):
    """Request to append a lifecycle event to a session."""

    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = Field(
        default=None,
        description="Event time (defaults to now); must not precede the latest event"
    )


class DecisionRequest(BaseModel):
    """Scored output to run through the escalation gate."""

    scored_output: Optional[ScoredOutput] = Field(
        default=None,
        description="Omit when scoring failed; the session is then escalated"
    )
    category: Optional[str] = None


class EvaluationRunRequest(BaseModel):
    """Request to run evaluators against a reference set or a live sample."""

    source: DatasetKind = DatasetKind.LIVE
    reference_path: Optional[str] = Field(
        default=None,
        description="JSON/JSONL reference dataset file, relative to the reference directory"
    )
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    sample_size: Optional[int] = Field(default=None, ge=1)
    seed: int = 0
    dataset_id: Optional[str] = Field(
        default=None,
        description="Trend series ID; defaults to the file-derived ID or \"live\""
    )
    evaluators: Optional[list[str]] = Field(
        default=None,
        description="Evaluator selectors ('name' or 'name@version'); all when omitted"
    )
    system_version: str = "unknown"
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_source(self) -> "EvaluationRunRequest":
        if self.source == DatasetKind.REFERENCE and not self.reference_path:
            raise ValueError("reference_path is required for reference datasets")
        if self.source == DatasetKind.LIVE and (self.window_start is None or self.window_end is None):
            raise ValueError("window_start and window_end are required for live samples")
        if (
            self.window_start is not None
            and self.window_end is not None
            and ensure_utc(self.window_end) < ensure_utc(self.window_start)
        ):
            raise ValueError("window_end precedes window_start")
        return self


# ============================================
# Response Schemas
# ============================================

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    timestamp: datetime
    version: str


class EvaluationRunResponse(BaseModel):
    """Response after an evaluation run completes."""

    report: EvaluationReport
    partial: bool
    alerts: list[dict[str, Any]] = Field(default_factory=list)


class TrendResponse(BaseModel):
    """Trend series for one metric on one dataset."""

    metric_name: str
    dataset_id: str
    records: list[TrendRecord]
    summary: TrendSummary


class DegradationResponse(BaseModel):
    """Degradation check result."""

    metric_name: str
    dataset_id: str
    degraded: bool
    percentile: float
    trailing_windows: int
