"""Repository pattern for database access."""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from evalgate.db.database import (
    EventRow,
    ReportRow,
    SessionRow,
    TrendRow,
    from_db_time,
    to_db_time,
)
from evalgate.models.evaluation import EvaluationReport, MetricSet, TrendRecord
from evalgate.models.events import Event, EventType, Session


class SessionRepository:
    """Repository for Session rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        session_id: str,
        created_at: datetime,
        input_payload: dict,
    ) -> SessionRow:
        """Create a new session record."""
        row = SessionRow(
            id=session_id,
            created_at=to_db_time(created_at),
            input_payload=input_payload,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get(self, session_id: str) -> Optional[SessionRow]:
        """Get session by ID."""
        result = await self.session.execute(
            select(SessionRow).where(SessionRow.id == session_id)
        )
        return result.scalar_one_or_none()

    async def list_ids_in_window(self, start: datetime, end: datetime) -> list[str]:
        """Session IDs created in [start, end), sorted by ID."""
        result = await self.session.execute(
            select(SessionRow.id)
            .where(SessionRow.created_at >= to_db_time(start))
            .where(SessionRow.created_at < to_db_time(end))
            .order_by(SessionRow.id)
        )
        return list(result.scalars().all())

    async def get_many(self, session_ids: list[str]) -> list[SessionRow]:
        result = await self.session.execute(
            select(SessionRow)
            .where(SessionRow.id.in_(session_ids))
            .order_by(SessionRow.id)
        )
        return list(result.scalars().all())

    @staticmethod
    def to_model(row: SessionRow) -> Session:
        return Session(
            id=row.id,
            created_at=from_db_time(row.created_at),
            input_payload=row.input_payload or {},
        )


class EventRepository:
    """Repository for append-only Event rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, event: Event) -> Event:
        """Insert an event row and return the event with its sequence number."""
        row = EventRow(
            session_id=event.session_id,
            timestamp=to_db_time(event.timestamp),
            event_type=event.event_type.value,
            payload=event.payload,
        )
        self.session.add(row)
        await self.session.flush()
        return event.model_copy(update={"sequence": row.id})

    async def latest_timestamp(self, session_id: str) -> Optional[datetime]:
        """Timestamp of the session's most recent event."""
        result = await self.session.execute(
            select(func.max(EventRow.timestamp)).where(EventRow.session_id == session_id)
        )
        return from_db_time(result.scalar_one_or_none())

    async def list_for_session(self, session_id: str) -> list[Event]:
        """Events for a session in timestamp order, ties in append order."""
        result = await self.session.execute(
            select(EventRow)
            .where(EventRow.session_id == session_id)
            .order_by(EventRow.timestamp, EventRow.id)
        )
        return [self.to_model(r) for r in result.scalars().all()]

    async def list_for_sessions(self, session_ids: list[str]) -> dict[str, list[Event]]:
        grouped: dict[str, list[Event]] = {sid: [] for sid in session_ids}
        if not session_ids:
            return grouped
        result = await self.session.execute(
            select(EventRow)
            .where(EventRow.session_id.in_(session_ids))
            .order_by(EventRow.session_id, EventRow.timestamp, EventRow.id)
        )
        for row in result.scalars().all():
            grouped[row.session_id].append(self.to_model(row))
        return grouped

    async def list_all(self) -> list[Event]:
        result = await self.session.execute(
            select(EventRow).order_by(EventRow.session_id, EventRow.timestamp, EventRow.id)
        )
        return [self.to_model(r) for r in result.scalars().all()]

    @staticmethod
    def to_model(row: EventRow) -> Event:
        return Event(
            session_id=row.session_id,
            timestamp=from_db_time(row.timestamp),
            event_type=EventType(row.event_type),
            payload=row.payload or {},
            sequence=row.id,
        )


class TrendRepository:
    """Repository for TrendRecord rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(
        self,
        metric_set: MetricSet,
        window_start: datetime,
        window_end: datetime,
    ) -> TrendRecord:
        row = TrendRow(
            dataset_id=metric_set.dataset_id,
            evaluator_name=metric_set.evaluator_name,
            evaluator_version=metric_set.evaluator_version,
            system_version=metric_set.system_version,
            metrics=dict(metric_set.metrics),
            computed_at=to_db_time(metric_set.computed_at),
            window_start=to_db_time(window_start),
            window_end=to_db_time(window_end),
        )
        self.session.add(row)
        await self.session.flush()
        return self.to_model(row)

    async def list_for_dataset(self, dataset_id: str) -> list[TrendRecord]:
        """All records for a dataset ordered by window start, ties by ingestion."""
        result = await self.session.execute(
            select(TrendRow)
            .where(TrendRow.dataset_id == dataset_id)
            .order_by(TrendRow.window_start, TrendRow.id)
        )
        return [self.to_model(r) for r in result.scalars().all()]

    @staticmethod
    def to_model(row: TrendRow) -> TrendRecord:
        return TrendRecord(
            id=row.id,
            metric_set=MetricSet(
                evaluator_name=row.evaluator_name,
                evaluator_version=row.evaluator_version,
                dataset_id=row.dataset_id,
                system_version=row.system_version,
                metrics=row.metrics or {},
                computed_at=from_db_time(row.computed_at),
                window_start=from_db_time(row.window_start),
                window_end=from_db_time(row.window_end),
            ),
            window_start=from_db_time(row.window_start),
            window_end=from_db_time(row.window_end),
        )


class ReportRepository:
    """Repository for stored evaluation reports."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def save(self, report: EvaluationReport) -> ReportRow:
        row = ReportRow(
            run_id=report.run_id,
            created_at=to_db_time(report.timestamp),
            dataset_id=report.dataset_id,
            system_version=report.system_version,
            report=report.model_dump(mode="json"),
            failure_count=len(report.failures),
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get(self, run_id: str) -> Optional[EvaluationReport]:
        result = await self.session.execute(
            select(ReportRow).where(ReportRow.run_id == run_id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return EvaluationReport.model_validate(row.report)

    async def list_recent(self, limit: int = 10) -> list[EvaluationReport]:
        result = await self.session.execute(
            select(ReportRow).order_by(ReportRow.created_at.desc()).limit(limit)
        )
        return [EvaluationReport.model_validate(r.report) for r in result.scalars().all()]
