"""Harness-level evaluators over recorded session telemetry."""

from typing import Any, Iterator

import structlog

from evalgate.evaluation.base import BaseEvaluator
from evalgate.evaluation.dataset import Dataset
from evalgate.evaluation.registry import EvaluatorRegistry
from evalgate.gate.escalation import decide
from evalgate.models.events import EventType
from evalgate.models.scoring import ScoredOutput, ThresholdConfig

logger = structlog.get_logger()

_DECISION_EVENTS = {EventType.ESCALATION_TRIGGERED.value, EventType.OUTPUT_PRODUCED.value}


def _decision_payloads(dataset: Dataset) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield (session_id, payload) for every recorded gate decision in a live dataset."""
    for record in dataset.records:
        session_id = record.get("session", {}).get("id", "")
        for event in record.get("events", []):
            if event.get("event_type") in _DECISION_EVENTS and "decision" in event.get("payload", {}):
                yield session_id, event["payload"]


class EscalationRateEvaluator(BaseEvaluator):
    """Share of sampled sessions routed to human review, split by reason."""

    description = "Escalation, low-confidence and policy-exclusion rates over decided sessions"

    @property
    def name(self) -> str:
        return "escalation_rate"

    @property
    def version(self) -> str:
        return "1.0.0"

    async def evaluate(self, dataset: Dataset, system_version: str) -> dict[str, float]:
        decided = 0
        escalated = 0
        low_confidence = 0
        policy = 0
        confidences = []

        for _, payload in _decision_payloads(dataset):
            decision = payload["decision"]
            decided += 1
            if decision.get("action") == "escalate":
                escalated += 1
                if decision.get("reason") == "PolicyExclusion":
                    policy += 1
                else:
                    low_confidence += 1
            if decision.get("confidence") is not None:
                confidences.append(float(decision["confidence"]))

        def rate(count: int) -> float:
            return count / decided if decided else 0.0

        return {
            "escalation_rate": rate(escalated),
            "low_confidence_rate": rate(low_confidence),
            "policy_exclusion_rate": rate(policy),
            "mean_confidence": sum(confidences) / len(confidences) if confidences else 0.0,
            "decided_sessions": float(decided),
        }


class DecisionConsistencyEvaluator(BaseEvaluator):
    """
    Replays recorded gate decisions against their stored threshold snapshots.

    A decision is consistent when decide() on the recorded scored output and the
    recorded configuration reproduces the same action and reason.
    """

    description = "Agreement between recorded and replayed escalation decisions"

    @property
    def name(self) -> str:
        return "decision_consistency"

    @property
    def version(self) -> str:
        return "1.0.0"

    async def evaluate(self, dataset: Dataset, system_version: str) -> dict[str, float]:
        checked = 0
        agreed = 0

        for session_id, payload in _decision_payloads(dataset):
            recorded = payload["decision"]
            config = ThresholdConfig.model_validate(recorded.get("config_snapshot") or {})
            raw_scored = payload.get("scored_output")
            scored = ScoredOutput.model_validate(raw_scored) if raw_scored is not None else None

            replayed = decide(scored, config, recorded.get("category"))
            checked += 1
            reason = replayed.reason.value if replayed.reason else None
            if replayed.action.value == recorded.get("action") and reason == recorded.get("reason"):
                agreed += 1
            else:
                logger.warning(
                    "Inconsistent escalation decision",
                    session_id=session_id,
                    recorded=recorded.get("action"),
                    replayed=replayed.action.value,
                )

        return {
            "decision_consistency": agreed / checked if checked else 1.0,
            "decisions_checked": float(checked),
        }


def register_builtin_evaluators(registry: EvaluatorRegistry) -> None:
    """Register the harness evaluators that ship with evalgate."""
    registry.register_evaluator(EscalationRateEvaluator())
    registry.register_evaluator(DecisionConsistencyEvaluator())
