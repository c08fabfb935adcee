"""Database package for persistence layer."""

from evalgate.db.database import close_db, init_db, transaction
from evalgate.db.repositories import (
    EventRepository,
    ReportRepository,
    SessionRepository,
    TrendRepository,
)

__all__ = [
    "close_db",
    "init_db",
    "transaction",
    "EventRepository",
    "ReportRepository",
    "SessionRepository",
    "TrendRepository",
]
