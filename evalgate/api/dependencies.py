"""Service wiring shared by the API and scripts."""

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from evalgate.analysis.statistics import StatisticalAnalyzer
from evalgate.config import Settings
from evalgate.evaluation.builtin import register_builtin_evaluators
from evalgate.evaluation.registry import EvaluatorRegistry
from evalgate.evaluation.runner import EvaluationRunner
from evalgate.gate.escalation import EscalationGate, ReviewSink
from evalgate.reporting.aggregation import AlertSink, TrendAggregator
from evalgate.reporting.report import ReportGenerator
from evalgate.store.event_store import EventStore


@dataclass
class Services:
    """Long-lived components of a running process."""

    settings: Settings
    session_factory: async_sessionmaker
    store: EventStore
    gate: EscalationGate
    registry: EvaluatorRegistry
    aggregator: TrendAggregator
    runner: EvaluationRunner
    reports: ReportGenerator


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker,
    registry: EvaluatorRegistry | None = None,
    review_sink: ReviewSink | None = None,
    alert_sink: AlertSink | None = None,
) -> Services:
    """Assemble the components. Built-in evaluators are added to a fresh registry."""
    if registry is None:
        registry = EvaluatorRegistry()
        register_builtin_evaluators(registry)

    analyzer = StatisticalAnalyzer(settings.confidence_level)
    store = EventStore(session_factory)
    aggregator = TrendAggregator(session_factory, analyzer=analyzer, alert_sink=alert_sink)

    return Services(
        settings=settings,
        session_factory=session_factory,
        store=store,
        gate=EscalationGate(store, settings.threshold_config(), review_sink=review_sink),
        registry=registry,
        aggregator=aggregator,
        runner=EvaluationRunner(
            registry,
            aggregator=aggregator,
            default_timeout=settings.evaluator_timeout_seconds,
        ),
        reports=ReportGenerator(analyzer),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the process-wide services."""
    return request.app.state.services
