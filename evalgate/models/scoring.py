"""Scored output, threshold configuration and escalation decision schemas."""

import math
import operator
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

_OPERATORS = {
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
}


class DecisionAction(str, Enum):
    """What the gate does with a candidate output."""

    AUTO_RETURN = "auto_return"
    ESCALATE = "escalate"


class EscalationReason(str, Enum):
    """Why an output was routed to human review."""

    LOW_CONFIDENCE = "LowConfidence"
    POLICY_EXCLUSION = "PolicyExclusion"


class ScoredOutput(BaseModel):
    """Candidate output produced by the model-call collaborator."""

    output: Any = None
    confidence: float = Field(ge=0.0, le=1.0, allow_inf_nan=False)
    subscores: dict[str, float] = Field(default_factory=dict)
    category: str | None = None

    @field_validator("subscores")
    @classmethod
    def _check_subscores(cls, value: dict[str, float]) -> dict[str, float]:
        for name, score in value.items():
            if not math.isfinite(score):
                raise ValueError(f"Sub-score '{name}' is not finite: {score}")
        return value


class ExclusionRule(BaseModel):
    """
    Hard-exclusion rule on a named sub-score.

    A matching rule escalates regardless of overall confidence.
    """

    model_config = ConfigDict(frozen=True)

    name: str = ""
    subscore: str
    operator: str = ">="
    threshold: float

    @field_validator("operator")
    @classmethod
    def _check_operator(cls, value: str) -> str:
        if value not in _OPERATORS:
            raise ValueError(f"Unsupported operator '{value}', expected one of {list(_OPERATORS)}")
        return value

    @property
    def label(self) -> str:
        return self.name or f"{self.subscore}{self.operator}{self.threshold}"

    def matches(self, subscores: dict[str, float]) -> bool:
        """
        Check the rule against sub-scores.

        A missing sub-score never matches; a sub-score that is present but not a
        finite number always does.
        """
        value = subscores.get(self.subscore)
        if value is None:
            return False
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            return True
        return _OPERATORS[self.operator](value, self.threshold)


class ThresholdConfig(BaseModel):
    """Immutable escalation threshold configuration."""

    model_config = ConfigDict(frozen=True)

    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    category_overrides: dict[str, float] = Field(default_factory=dict)
    exclusion_rules: list[ExclusionRule] = Field(default_factory=list)

    @field_validator("category_overrides")
    @classmethod
    def _check_overrides(cls, value: dict[str, float]) -> dict[str, float]:
        for category, threshold in value.items():
            if not 0.0 <= threshold <= 1.0:
                raise ValueError(f"Threshold override for '{category}' out of range: {threshold}")
        return value

    def threshold_for(self, category: str | None) -> float:
        if category is not None and category in self.category_overrides:
            return self.category_overrides[category]
        return self.confidence_threshold

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class EscalationDecision(BaseModel):
    """Deterministic outcome of the escalation gate."""

    model_config = ConfigDict(frozen=True)

    action: DecisionAction
    reason: EscalationReason | None = None
    threshold: float
    confidence: float | None = None  # None when no usable scored output existed
    category: str | None = None
    matched_rules: list[str] = Field(default_factory=list)
    config_snapshot: dict[str, Any] = Field(default_factory=dict)
    handed_off: bool = False  # set by the gate once the review sink accepted the payload

    @property
    def escalate(self) -> bool:
        return self.action == DecisionAction.ESCALATE


class EscalationPayload(BaseModel):
    """Handoff record delivered to the human-review collaborator."""

    session_id: str
    output: Any = None
    confidence: float | None = None
    reason: EscalationReason
