"""Session and event schemas for the append-only event log."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from evalgate.models.common import ensure_utc, utc_now


class EventType(str, Enum):
    """Closed set of lifecycle facts recorded about a session."""

    INPUT_CAPTURED = "InputCaptured"
    MODEL_CALL_ISSUED = "ModelCallIssued"
    MODEL_CALL_COMPLETED = "ModelCallCompleted"
    OUTPUT_PRODUCED = "OutputProduced"
    ESCALATION_TRIGGERED = "EscalationTriggered"
    USER_FEEDBACK_RECEIVED = "UserFeedbackReceived"


class SessionStatus(str, Enum):
    """Lifecycle status derived by folding a session's events."""

    PENDING = "pending"
    INPUT_CAPTURED = "input_captured"
    AWAITING_MODEL = "awaiting_model"
    MODEL_COMPLETED = "model_completed"
    RETURNED = "returned"
    ESCALATED = "escalated"


class Event(BaseModel):
    """An immutable, timestamped fact about a session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    sequence: int | None = None  # Assigned by the store on append

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def to_log_record(self) -> dict[str, Any]:
        """Serialize in the persisted event log format."""
        return {
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "payload": self.payload,
        }


class SessionState(BaseModel):
    """Result of folding a session's events in timestamp order."""

    model_config = ConfigDict(frozen=True)

    status: SessionStatus = SessionStatus.PENDING
    escalated: bool = False
    escalation_reason: str | None = None
    feedback_count: int = 0
    event_count: int = 0
    last_event_at: datetime | None = None


class Session(BaseModel):
    """One end-to-end interaction tracked by the event store."""

    id: str
    created_at: datetime
    input_payload: dict[str, Any] = Field(default_factory=dict)
    state: SessionState = Field(default_factory=SessionState)

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class SessionRecord(BaseModel):
    """A session together with its ordered events."""

    session: Session
    events: list[Event] = Field(default_factory=list)

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def state(self) -> SessionState:
        return self.session.state

    def events_of(self, event_type: EventType) -> list[Event]:
        return [e for e in self.events if e.event_type == event_type]
