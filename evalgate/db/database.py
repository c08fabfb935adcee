"""Database setup and session management using SQLAlchemy."""

import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, relationship
import structlog

from evalgate.config import get_settings
from evalgate.errors import StorageError
from evalgate.models.common import ensure_utc

logger = structlog.get_logger()

Base = declarative_base()


def to_db_time(value: datetime) -> datetime:
    """Store timestamps as naive UTC; SQLite drops offsets."""
    return ensure_utc(value).replace(tzinfo=None)


def from_db_time(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


# ============================================
# Database Models
# ============================================

class SessionRow(Base):
    """One tracked interaction. Never deleted by the application."""

    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    created_at = Column(DateTime, nullable=False, index=True)
    input_payload = Column(JSON, default=dict)

    events = relationship("EventRow", back_populates="session", order_by="EventRow.id")


class EventRow(Base):
    """Append-only lifecycle event. One row per durable unit."""

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), ForeignKey("sessions.id"), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    event_type = Column(String(32), nullable=False)
    payload = Column(JSON, default=dict)

    session = relationship("SessionRow", back_populates="events")

    __table_args__ = (Index("ix_events_session_ts", "session_id", "timestamp", "id"),)


class TrendRow(Base):
    """A metric set ingested for trend tracking."""

    __tablename__ = "trend_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dataset_id = Column(String(200), nullable=False, index=True)
    evaluator_name = Column(String(200), nullable=False)
    evaluator_version = Column(String(50), nullable=False)
    system_version = Column(String(100), nullable=False)
    metrics = Column(JSON, nullable=False)  # Dict of metric name to value
    computed_at = Column(DateTime, nullable=False)
    window_start = Column(DateTime, nullable=False, index=True)
    window_end = Column(DateTime, nullable=False)


class ReportRow(Base):
    """Stored evaluation report."""

    __tablename__ = "evaluation_reports"

    run_id = Column(String(36), primary_key=True)
    created_at = Column(DateTime, nullable=False)
    dataset_id = Column(String(200), nullable=False)
    system_version = Column(String(100), nullable=False)
    report = Column(JSON, nullable=False)
    failure_count = Column(Integer, default=0)
    notes = Column(Text, nullable=True)


# ============================================
# Database Engine & Session
# ============================================

_engine = None
_session_factory = None


async def init_db(database_url: str | None = None) -> async_sessionmaker:
    """Initialize database engine and create tables."""
    global _engine, _session_factory

    if database_url is None:
        settings = get_settings()
        database_url = settings.database_url

    # Create data directory if using SQLite
    if database_url.startswith("sqlite+aiosqlite:///") and ":memory:" not in database_url:
        db_path = database_url.replace("sqlite+aiosqlite:///", "")
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)

    try:
        if _engine is not None:
            await _engine.dispose()

        _engine = create_async_engine(
            database_url,
            echo=False,
        )

        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        # Create tables
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except (SQLAlchemyError, OSError) as e:
        logger.error("Database initialization failed", database_url=database_url, error=str(e))
        raise StorageError(f"Could not initialize database at {database_url}: {e}") from e

    logger.info("Database initialized", database_url=database_url)
    return _session_factory


async def close_db() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


@asynccontextmanager
async def transaction(factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """Open a session from an explicit factory, committing on success."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
