"""Per-session interaction pipeline: capture, model call, gate."""

import asyncio
import time
from typing import Any, Awaitable, Callable

from aiolimiter import AsyncLimiter
from pydantic import BaseModel, ValidationError
import structlog

from evalgate.config import get_settings
from evalgate.gate.escalation import EscalationGate
from evalgate.models.events import EventType
from evalgate.models.scoring import EscalationDecision, ScoredOutput
from evalgate.store.event_store import EventStore

logger = structlog.get_logger()

ModelCall = Callable[[dict[str, Any]], Awaitable[ScoredOutput | dict[str, Any] | None]]


class SessionOutcome(BaseModel):
    """Result of handling one interaction end to end."""

    session_id: str
    decision: EscalationDecision
    scored: ScoredOutput | None = None
    error: str | None = None


class InteractionPipeline:
    """
    Records every interaction and routes its output through the escalation gate.

    Each session runs as its own task; sessions proceed in parallel while a single
    session's events are appended in causal order. A model call that fails, times
    out or returns an unusable score leaves the session without a scored output,
    which the gate escalates.
    """

    def __init__(
        self,
        store: EventStore,
        gate: EscalationGate,
        model_call: ModelCall,
        max_concurrent: int | None = None,
        calls_per_minute: int | None = None,
        call_timeout: float | None = None,
    ):
        settings = get_settings()
        self.store = store
        self.gate = gate
        self.model_call = model_call
        self.call_timeout = call_timeout or settings.model_call_timeout_seconds

        self._semaphore = asyncio.Semaphore(max_concurrent or settings.max_concurrent_sessions)
        self._limiter = AsyncLimiter(calls_per_minute or settings.model_calls_per_minute, 60)

    async def _call_model(self, session_id: str, input_payload: dict[str, Any]) -> tuple[ScoredOutput | None, str | None]:
        await self._limiter.acquire()
        try:
            raw = await asyncio.wait_for(self.model_call(input_payload), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            return None, f"model call exceeded {self.call_timeout}s"
        except Exception as e:
            logger.error("Model call failed", session_id=session_id, error=str(e))
            return None, f"{type(e).__name__}: {e}"

        if raw is None:
            return None, "model call returned no scored output"
        if isinstance(raw, ScoredOutput):
            return raw, None
        try:
            return ScoredOutput.model_validate(raw), None
        except ValidationError as e:
            logger.warning("Unusable scored output", session_id=session_id, error=str(e))
            return None, f"invalid scored output: {e.error_count()} validation error(s)"

    async def handle(
        self,
        input_payload: dict[str, Any],
        category: str | None = None,
        session_id: str | None = None,
    ) -> SessionOutcome:
        """Process one interaction from input capture to gate decision."""
        async with self._semaphore:
            session = await self.store.create_session(input_payload, session_id=session_id)
            sid = session.id

            await self.store.append(sid, EventType.MODEL_CALL_ISSUED, {"category": category})

            start = time.perf_counter()
            scored, error = await self._call_model(sid, input_payload)
            latency_ms = (time.perf_counter() - start) * 1000

            await self.store.append(sid, EventType.MODEL_CALL_COMPLETED, {
                "success": scored is not None,
                "latency_ms": round(latency_ms, 2),
                "confidence": scored.confidence if scored is not None else None,
                "subscores": scored.subscores if scored is not None else {},
                "error": error,
            })

            decision = await self.gate.process(sid, scored, category)

        return SessionOutcome(session_id=sid, decision=decision, scored=scored, error=error)

    async def handle_many(
        self,
        inputs: list[dict[str, Any]],
        category: str | None = None,
    ) -> list[SessionOutcome]:
        """Process many interactions concurrently, one task per session."""
        outcomes = await asyncio.gather(*(self.handle(p, category) for p in inputs))
        escalated = sum(1 for o in outcomes if o.decision.escalate)
        logger.info("Batch processed", sessions=len(outcomes), escalated=escalated)
        return list(outcomes)

    async def record_feedback(self, session_id: str, feedback: dict[str, Any]) -> None:
        """Attach end-user feedback to a session."""
        await self.store.append(session_id, EventType.USER_FEEDBACK_RECEIVED, feedback)
