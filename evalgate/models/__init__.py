"""Data models package."""

from evalgate.models.events import (
    Event,
    EventType,
    Session,
    SessionRecord,
    SessionState,
    SessionStatus,
)
from evalgate.models.scoring import (
    DecisionAction,
    EscalationDecision,
    EscalationPayload,
    EscalationReason,
    ExclusionRule,
    ScoredOutput,
    ThresholdConfig,
)
from evalgate.models.evaluation import (
    DatasetKind,
    DegradationAlert,
    DegradationPolicy,
    EvaluationReport,
    EvaluatorFailure,
    FailureKind,
    MetricSet,
    PartialFailureReport,
    RunResult,
    TrendRecord,
)

__all__ = [
    "Event",
    "EventType",
    "Session",
    "SessionRecord",
    "SessionState",
    "SessionStatus",
    "DecisionAction",
    "EscalationDecision",
    "EscalationPayload",
    "EscalationReason",
    "ExclusionRule",
    "ScoredOutput",
    "ThresholdConfig",
    "DatasetKind",
    "DegradationAlert",
    "DegradationPolicy",
    "EvaluationReport",
    "EvaluatorFailure",
    "FailureKind",
    "MetricSet",
    "PartialFailureReport",
    "RunResult",
    "TrendRecord",
]
