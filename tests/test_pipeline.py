"""Tests for the interaction pipeline."""

import asyncio
from datetime import timedelta

import pytest

from evalgate.evaluation.builtin import register_builtin_evaluators
from evalgate.evaluation.dataset import Dataset
from evalgate.evaluation.runner import EvaluationRunner
from evalgate.models.common import utc_now
from evalgate.models.events import EventType, SessionStatus
from evalgate.models.scoring import EscalationReason, ScoredOutput
from evalgate.pipeline import InteractionPipeline


async def confident_model(payload):
    return ScoredOutput(output=f"answer to {payload['q']}", confidence=0.92, subscores={"policy_violation": 0.0})


async def unsure_model(payload):
    return {"output": "perhaps", "confidence": 0.4}


async def failing_model(payload):
    raise ConnectionError("upstream reset")


async def slow_model(payload):
    await asyncio.sleep(5)


async def garbage_model(payload):
    return {"output": "x", "confidence": 7}


async def nan_subscore_model(payload):
    return {"output": "x", "confidence": 0.95, "subscores": {"policy_violation": float("nan")}}


def _pipeline(store, gate, model_call, **kwargs):
    kwargs.setdefault("max_concurrent", 4)
    kwargs.setdefault("calls_per_minute", 6000)
    kwargs.setdefault("call_timeout", 1.0)
    return InteractionPipeline(store, gate, model_call, **kwargs)


class TestInteractionPipeline:

    @pytest.mark.asyncio
    async def test_auto_return_lifecycle(self, store, gate, review_queue):
        pipeline = _pipeline(store, gate, confident_model)
        outcome = await pipeline.handle({"q": "hours?"})

        assert not outcome.decision.escalate
        assert outcome.scored.output == "answer to hours?"
        record = await store.get_session_record(outcome.session_id)
        assert [e.event_type for e in record.events] == [
            EventType.INPUT_CAPTURED,
            EventType.MODEL_CALL_ISSUED,
            EventType.MODEL_CALL_COMPLETED,
            EventType.OUTPUT_PRODUCED,
        ]
        completed = record.events_of(EventType.MODEL_CALL_COMPLETED)[0]
        assert completed.payload["success"] is True
        assert completed.payload["confidence"] == 0.92
        assert review_queue == []

    @pytest.mark.asyncio
    async def test_low_confidence_escalates(self, store, gate, review_queue):
        pipeline = _pipeline(store, gate, unsure_model)
        outcome = await pipeline.handle({"q": "refund?"}, session_id="s-refund")

        assert outcome.session_id == "s-refund"
        assert outcome.decision.reason == EscalationReason.LOW_CONFIDENCE
        assert review_queue[0].session_id == "s-refund"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("model_call", [failing_model, slow_model, garbage_model, nan_subscore_model])
    async def test_unusable_model_output_escalates(self, store, gate, model_call):
        pipeline = _pipeline(store, gate, model_call, call_timeout=0.1)
        outcome = await pipeline.handle({"q": "x"})

        assert outcome.scored is None
        assert outcome.error
        assert outcome.decision.reason == EscalationReason.LOW_CONFIDENCE
        assert outcome.decision.confidence is None

        record = await store.get_session_record(outcome.session_id)
        assert record.state.status == SessionStatus.ESCALATED
        assert record.events_of(EventType.MODEL_CALL_COMPLETED)[0].payload["success"] is False

    @pytest.mark.asyncio
    async def test_handle_many_and_feedback(self, store, gate):
        pipeline = _pipeline(store, gate, confident_model)
        outcomes = await pipeline.handle_many([{"q": str(i)} for i in range(8)])

        assert len({o.session_id for o in outcomes}) == 8

        await pipeline.record_feedback(outcomes[0].session_id, {"rating": 5})
        record = await store.get_session_record(outcomes[0].session_id)
        assert record.state.feedback_count == 1
        assert record.state.status == SessionStatus.RETURNED

    @pytest.mark.asyncio
    async def test_live_sample_evaluation(self, store, gate, registry):
        start = utc_now() - timedelta(minutes=1)
        pipeline = _pipeline(store, gate, confident_model)
        await pipeline.handle_many([{"q": str(i)} for i in range(3)])
        await _pipeline(store, gate, unsure_model).handle({"q": "unsure"})
        end = utc_now() + timedelta(minutes=1)

        sample = await store.sample_live(start, end, 10, seed=7)
        dataset = Dataset.from_sessions(sample, start, end, seed=7)

        register_builtin_evaluators(registry)
        result = await EvaluationRunner(registry, default_timeout=5).run(dataset)

        by_name = {m.evaluator_name: m.metrics for m in result.metric_sets}
        assert by_name["escalation_rate"]["decided_sessions"] == 4.0
        assert by_name["escalation_rate"]["escalation_rate"] == pytest.approx(0.25)
        assert by_name["decision_consistency"]["decision_consistency"] == 1.0
