"""Confidence-gated escalation of candidate outputs to human review."""

import inspect
import math
from typing import Any, Awaitable, Callable, Union

import structlog

from evalgate.models.events import EventType
from evalgate.models.scoring import (
    DecisionAction,
    EscalationDecision,
    EscalationPayload,
    EscalationReason,
    ScoredOutput,
    ThresholdConfig,
)
from evalgate.store.event_store import EventStore

logger = structlog.get_logger()

ReviewSink = Callable[[EscalationPayload], Union[None, Awaitable[None]]]


def _usable_confidence(scored: ScoredOutput | None) -> float | None:
    # Validated outputs are always usable; model_construct() skips validation.
    if scored is None:
        return None
    value = scored.confidence
    if not isinstance(value, (int, float)) or not math.isfinite(value) or not 0.0 <= value <= 1.0:
        return None
    return float(value)


def decide(
    scored: ScoredOutput | None,
    config: ThresholdConfig,
    category: str | None = None,
) -> EscalationDecision:
    """
    Map a scored output to auto-return or escalate.

    Exclusion rules are checked first and win over confidence. Otherwise the output
    escalates when confidence is strictly below the threshold; a confidence equal to
    the threshold is auto-returned. A missing or unusable scored output always
    escalates as LowConfidence.
    """
    category = category if category is not None else (scored.category if scored else None)
    threshold = config.threshold_for(category)
    confidence = _usable_confidence(scored)
    snapshot = config.snapshot()

    if confidence is None:
        return EscalationDecision(
            action=DecisionAction.ESCALATE,
            reason=EscalationReason.LOW_CONFIDENCE,
            threshold=threshold,
            confidence=None,
            category=category,
            config_snapshot=snapshot,
        )

    matched = [rule.label for rule in config.exclusion_rules if rule.matches(scored.subscores)]
    if matched:
        return EscalationDecision(
            action=DecisionAction.ESCALATE,
            reason=EscalationReason.POLICY_EXCLUSION,
            threshold=threshold,
            confidence=confidence,
            category=category,
            matched_rules=matched,
            config_snapshot=snapshot,
        )

    if confidence < threshold:
        return EscalationDecision(
            action=DecisionAction.ESCALATE,
            reason=EscalationReason.LOW_CONFIDENCE,
            threshold=threshold,
            confidence=confidence,
            category=category,
            config_snapshot=snapshot,
        )

    return EscalationDecision(
        action=DecisionAction.AUTO_RETURN,
        threshold=threshold,
        confidence=confidence,
        category=category,
        config_snapshot=snapshot,
    )


class EscalationGate:
    """
    Applies decide() to a session's scored output and records the outcome.

    Escalations are recorded as EscalationTriggered events and handed to the review
    sink; auto-returns are recorded as OutputProduced events. Both carry the threshold
    snapshot so later audits can reconstruct the decision after thresholds change.
    """

    def __init__(
        self,
        store: EventStore,
        config: ThresholdConfig,
        review_sink: ReviewSink | None = None,
    ):
        self.store = store
        self.config = config
        self.review_sink = review_sink

    async def process(
        self,
        session_id: str,
        scored: ScoredOutput | None,
        category: str | None = None,
    ) -> EscalationDecision:
        """
        Decide, record the decision event, then hand escalations to review.

        The returned decision has ``handed_off`` set only when the review sink
        accepted the payload; the recorded event holds the decision itself.
        """
        decision = decide(scored, self.config, category)

        payload: dict[str, Any] = {
            "decision": decision.model_dump(mode="json", exclude={"handed_off"}),
            "scored_output": scored.model_dump(mode="json") if scored is not None else None,
        }
        if decision.escalate:
            payload["reason"] = decision.reason.value
            event_type = EventType.ESCALATION_TRIGGERED
        else:
            event_type = EventType.OUTPUT_PRODUCED

        await self.store.append(session_id, event_type, payload)

        logger.info(
            "Escalation decision",
            session_id=session_id,
            action=decision.action.value,
            reason=decision.reason.value if decision.reason else None,
            confidence=decision.confidence,
            threshold=decision.threshold,
        )

        if decision.escalate:
            handed_off = await self._hand_off(EscalationPayload(
                session_id=session_id,
                output=scored.output if scored is not None else None,
                confidence=decision.confidence,
                reason=decision.reason,
            ))
            decision = decision.model_copy(update={"handed_off": handed_off})

        return decision

    async def _hand_off(self, payload: EscalationPayload) -> bool:
        if self.review_sink is None:
            logger.debug("No review sink configured", session_id=payload.session_id)
            return False
        try:
            result = self.review_sink(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # Decision event is already committed
            logger.error(
                "Review handoff failed",
                session_id=payload.session_id,
                error=str(e),
            )
            return False
        return True
