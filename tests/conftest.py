"""Pytest configuration and fixtures."""

import json
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from evalgate.db.database import close_db, init_db
from evalgate.evaluation.dataset import Dataset
from evalgate.evaluation.registry import EvaluatorRegistry
from evalgate.gate.escalation import EscalationGate
from evalgate.models.scoring import ExclusionRule, ThresholdConfig
from evalgate.reporting.aggregation import TrendAggregator
from evalgate.store.event_store import EventStore


@pytest.fixture
def t0():
    """Fixed reference time for deterministic timestamps."""
    return datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def minutes(t0):
    """Helper producing t0 + n minutes."""
    return lambda n: t0 + timedelta(minutes=n)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database per test."""
    factory = await init_db(f"sqlite+aiosqlite:///{tmp_path / 'evalgate.db'}")
    yield factory
    await close_db()


@pytest.fixture
def store(session_factory):
    return EventStore(session_factory)


@pytest.fixture
def threshold_config():
    """Threshold 0.7 with a hard exclusion on policy_violation >= 0.5."""
    return ThresholdConfig(
        confidence_threshold=0.7,
        category_overrides={"medical": 0.9},
        exclusion_rules=[
            ExclusionRule(name="policy", subscore="policy_violation", operator=">=", threshold=0.5),
        ],
    )


@pytest.fixture
def review_queue():
    """Collects escalation payloads handed to human review."""
    return []


@pytest.fixture
def gate(store, threshold_config, review_queue):
    return EscalationGate(store, threshold_config, review_sink=review_queue.append)


@pytest.fixture
def registry():
    return EvaluatorRegistry()


@pytest.fixture
def aggregator(session_factory):
    return TrendAggregator(session_factory)


@pytest.fixture
def reference_dataset():
    """Small curated reference set."""
    return Dataset.from_records(
        "reference:smoke",
        [
            {"input": "What is 2+2?", "expected": "4", "actual": "4"},
            {"input": "Capital of France?", "expected": "Paris", "actual": "Paris"},
            {"input": "Largest planet?", "expected": "Jupiter", "actual": "Saturn"},
        ],
    )


@pytest.fixture
def reference_file(tmp_path):
    """Reference dataset written as JSONL."""
    records = [
        {"input": "Summarize the claim.", "expected": "Claim denied."},
        {"input": "Triage: chest pain", "expected": "urgent"},
    ]
    path = tmp_path / "reference.jsonl"
    path.write_text("\n".join(json.dumps(r) for r in records) + "\n")
    return path
