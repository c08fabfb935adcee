"""Durable, append-only store of interaction sessions and their lifecycle events."""

import asyncio
import json
import random
import uuid
import weakref
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
import structlog

from evalgate.db.database import transaction
from evalgate.db.repositories import EventRepository, SessionRepository
from evalgate.errors import DuplicateSessionError, InvalidOrderError, NotFoundError
from evalgate.models.common import ensure_utc, utc_now
from evalgate.models.events import (
    Event,
    EventType,
    Session,
    SessionRecord,
    SessionState,
    SessionStatus,
)

logger = structlog.get_logger()


_TRANSITIONS: dict[EventType, SessionStatus] = {
    EventType.INPUT_CAPTURED: SessionStatus.INPUT_CAPTURED,
    EventType.MODEL_CALL_ISSUED: SessionStatus.AWAITING_MODEL,
    EventType.MODEL_CALL_COMPLETED: SessionStatus.MODEL_COMPLETED,
    EventType.OUTPUT_PRODUCED: SessionStatus.RETURNED,
    EventType.ESCALATION_TRIGGERED: SessionStatus.ESCALATED,
}


def fold_events(events: list[Event]) -> SessionState:
    """
    Derive a session's lifecycle state from its events.

    Events are folded in timestamp order (stable for ties). Escalation is sticky:
    once escalated, later output events do not return the session to auto-return.
    Feedback never changes the status.
    """
    status = SessionStatus.PENDING
    escalated = False
    reason = None
    feedback = 0
    last_at = None

    for event in sorted(events, key=lambda e: e.timestamp):
        last_at = event.timestamp
        if event.event_type == EventType.USER_FEEDBACK_RECEIVED:
            feedback += 1
            continue
        if event.event_type == EventType.ESCALATION_TRIGGERED:
            escalated = True
            reason = event.payload.get("reason")
        if escalated and event.event_type == EventType.OUTPUT_PRODUCED:
            continue
        status = _TRANSITIONS[event.event_type]

    return SessionState(
        status=status,
        escalated=escalated,
        escalation_reason=reason,
        feedback_count=feedback,
        event_count=len(events),
        last_event_at=last_at,
    )


class EventStore:
    """
    Event-sourced session store.

    Every write is committed before the call returns. Appends for one session are
    serialized; different sessions never wait on each other.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._factory = session_factory
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def create_session(
        self,
        input_payload: dict[str, Any] | None = None,
        session_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Session:
        """Create a session and record its InputCaptured event in one transaction."""
        session_id = session_id or str(uuid.uuid4())
        created_at = ensure_utc(created_at) if created_at else utc_now()
        payload = input_payload or {}

        async with self._lock_for(session_id):
            try:
                async with transaction(self._factory) as db:
                    sessions = SessionRepository(db)
                    if await sessions.get(session_id) is not None:
                        raise DuplicateSessionError(f"Session already exists: {session_id}")
                    await sessions.create(session_id, created_at, payload)
                    event = await EventRepository(db).append(Event(
                        session_id=session_id,
                        timestamp=created_at,
                        event_type=EventType.INPUT_CAPTURED,
                        payload={"input": payload},
                    ))
            except IntegrityError as e:
                raise DuplicateSessionError(f"Session already exists: {session_id}") from e

        logger.debug("Session created", session_id=session_id)
        return Session(
            id=session_id,
            created_at=created_at,
            input_payload=payload,
            state=fold_events([event]),
        )

    async def append(
        self,
        session_id: str,
        event_type: EventType,
        payload: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> Event:
        """Append an event to a session. See append_event."""
        return await self.append_event(Event(
            session_id=session_id,
            event_type=event_type,
            payload=payload or {},
            timestamp=timestamp or utc_now(),
        ))

    async def append_event(self, event: Event) -> Event:
        """
        Append an event, rejecting out-of-order timestamps.

        Raises:
            NotFoundError: The session does not exist.
            InvalidOrderError: The event precedes the session's latest event.
                The stored sequence is left unchanged.
        """
        async with self._lock_for(event.session_id):
            async with transaction(self._factory) as db:
                if await SessionRepository(db).get(event.session_id) is None:
                    raise NotFoundError("Session", event.session_id)

                events = EventRepository(db)
                latest = await events.latest_timestamp(event.session_id)
                if latest is not None and event.timestamp < latest:
                    logger.warning(
                        "Rejected out-of-order event",
                        session_id=event.session_id,
                        event_type=event.event_type.value,
                        timestamp=event.timestamp.isoformat(),
                        latest=latest.isoformat(),
                    )
                    raise InvalidOrderError(event.session_id, event.timestamp, latest)

                stored = await events.append(event)

        logger.debug(
            "Event appended",
            session_id=event.session_id,
            event_type=event.event_type.value,
            sequence=stored.sequence,
        )
        return stored

    async def get_session(self, session_id: str) -> list[Event]:
        """Events of a session in timestamp order."""
        async with transaction(self._factory) as db:
            if await SessionRepository(db).get(session_id) is None:
                raise NotFoundError("Session", session_id)
            return await EventRepository(db).list_for_session(session_id)

    async def get_session_record(self, session_id: str) -> SessionRecord:
        """Session metadata, its events and its folded state."""
        async with transaction(self._factory) as db:
            row = await SessionRepository(db).get(session_id)
            if row is None:
                raise NotFoundError("Session", session_id)
            session = SessionRepository.to_model(row)
            events = await EventRepository(db).list_for_session(session_id)

        return SessionRecord(
            session=session.model_copy(update={"state": fold_events(events)}),
            events=events,
        )

    async def sample_live(
        self,
        window_start: datetime,
        window_end: datetime,
        sample_size: int,
        seed: int,
    ) -> list[SessionRecord]:
        """
        Draw a reproducible sample of sessions created in [window_start, window_end).

        Candidates are sorted by ID before sampling, so the same seed over the same
        stored data always yields the same set. Results are sorted by session ID.
        """
        if sample_size <= 0:
            raise ValueError(f"sample_size must be positive, got {sample_size}")
        window_start = ensure_utc(window_start)
        window_end = ensure_utc(window_end)
        if window_end < window_start:
            raise ValueError("window_end precedes window_start")

        async with transaction(self._factory) as db:
            sessions = SessionRepository(db)
            candidates = await sessions.list_ids_in_window(window_start, window_end)
            if len(candidates) > sample_size:
                chosen = sorted(random.Random(seed).sample(candidates, sample_size))
            else:
                chosen = candidates

            rows = await sessions.get_many(chosen)
            events_by_session = await EventRepository(db).list_for_sessions(chosen)

        records = []
        for row in rows:
            events = events_by_session.get(row.id, [])
            session = SessionRepository.to_model(row)
            records.append(SessionRecord(
                session=session.model_copy(update={"state": fold_events(events)}),
                events=events,
            ))

        logger.info(
            "Live sample drawn",
            window_start=window_start.isoformat(),
            window_end=window_end.isoformat(),
            candidates=len(candidates),
            sampled=len(records),
            seed=seed,
        )
        return records

    async def export_jsonl(self, path: str | Path) -> int:
        """Write the full event log, one JSON record per line. Returns the record count."""
        async with transaction(self._factory) as db:
            events = await EventRepository(db).list_all()

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            for event in events:
                f.write(json.dumps(event.to_log_record(), default=str) + "\n")

        logger.info("Event log exported", path=str(path), records=len(events))
        return len(events)
