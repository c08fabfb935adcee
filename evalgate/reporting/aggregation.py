"""Trend aggregation of metric sets and degradation detection."""

import inspect
from datetime import datetime
from typing import Awaitable, Callable, Union

from sqlalchemy.ext.asyncio import async_sessionmaker
import structlog

from evalgate.analysis.statistics import StatisticalAnalyzer
from evalgate.db.database import transaction
from evalgate.db.repositories import TrendRepository
from evalgate.models.common import ensure_utc
from evalgate.models.evaluation import (
    DegradationAlert,
    DegradationPolicy,
    MetricSet,
    TrendRecord,
)

logger = structlog.get_logger()

AlertSink = Callable[[DegradationAlert], Union[None, Awaitable[None]]]


class TrendAggregator:
    """
    Accumulates metric sets into time-windowed trend records.

    Records for one (metric, dataset) pair are totally ordered by window start,
    ties broken by ingestion order.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        analyzer: StatisticalAnalyzer | None = None,
        alert_sink: AlertSink | None = None,
    ):
        self._factory = session_factory
        self.analyzer = analyzer or StatisticalAnalyzer()
        self.alert_sink = alert_sink

    @staticmethod
    def _window(
        metric_set: MetricSet,
        window_start: datetime | None,
        window_end: datetime | None,
    ) -> tuple[datetime, datetime]:
        start = window_start or metric_set.window_start or metric_set.computed_at
        end = window_end or metric_set.window_end or start
        start, end = ensure_utc(start), ensure_utc(end)
        if end < start:
            raise ValueError("window_end precedes window_start")
        return start, end

    async def ingest(
        self,
        metric_set: MetricSet,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> TrendRecord:
        """
        Append a trend record for a metric set.

        The window defaults to the metric set's own window, else a point window at
        its computation time.
        """
        start, end = self._window(metric_set, window_start, window_end)
        async with transaction(self._factory) as db:
            record = await TrendRepository(db).add(metric_set, start, end)

        logger.debug(
            "Trend record ingested",
            dataset_id=metric_set.dataset_id,
            evaluator=metric_set.evaluator_name,
            window_start=start.isoformat(),
        )
        return record

    async def ingest_many(self, metric_sets: list[MetricSet]) -> list[TrendRecord]:
        """Append trend records for several metric sets in one transaction; all or none."""
        if not metric_sets:
            return []
        async with transaction(self._factory) as db:
            repository = TrendRepository(db)
            records = []
            for metric_set in metric_sets:
                start, end = self._window(metric_set, None, None)
                records.append(await repository.add(metric_set, start, end))

        logger.debug(
            "Trend records ingested",
            dataset_id=metric_sets[0].dataset_id,
            count=len(records),
        )
        return records

    async def _series(self, metric_name: str, dataset_id: str) -> list[TrendRecord]:
        async with transaction(self._factory) as db:
            records = await TrendRepository(db).list_for_dataset(dataset_id)
        return [r for r in records if metric_name in r.metric_set.metrics]

    async def trend(
        self,
        metric_name: str,
        dataset_id: str,
        window_count: int,
    ) -> list[TrendRecord]:
        """The last `window_count` records for a metric, most recent last."""
        if window_count <= 0:
            raise ValueError("window_count must be positive")
        series = await self._series(metric_name, dataset_id)
        return series[-window_count:]

    async def detect_degradation(
        self,
        metric_name: str,
        dataset_id: str,
        policy: DegradationPolicy,
    ) -> bool:
        """Compare the most recent window against the trailing windows before it."""
        return (await self._evaluate(metric_name, dataset_id, policy)) is not None

    async def _evaluate(
        self,
        metric_name: str,
        dataset_id: str,
        policy: DegradationPolicy,
    ) -> DegradationAlert | None:
        series = await self.trend(metric_name, dataset_id, policy.trailing_windows + 1)
        if len(series) < 2:
            return None

        current = series[-1]
        trailing = [r.value(metric_name) for r in series[:-1]]
        current_value = current.value(metric_name)

        if not self.analyzer.is_degraded(current_value, trailing, policy):
            return None

        return DegradationAlert(
            metric_name=metric_name,
            dataset_id=dataset_id,
            current_value=current_value,
            baseline_value=self.analyzer.degradation_cut(trailing, policy),
            window_start=current.window_start,
            policy=policy,
        )

    async def check_alerts(
        self,
        metric_names: list[str],
        dataset_id: str,
        policy: DegradationPolicy,
    ) -> list[DegradationAlert]:
        """Run degradation detection for several metrics and dispatch any alerts."""
        alerts = []
        for metric_name in metric_names:
            alert = await self._evaluate(metric_name, dataset_id, policy)
            if alert is None:
                continue
            alerts.append(alert)
            logger.warning(
                "Metric degradation detected",
                metric=metric_name,
                dataset_id=dataset_id,
                current=alert.current_value,
                baseline=alert.baseline_value,
                percentile=policy.percentile,
                trailing_windows=policy.trailing_windows,
            )
            if self.alert_sink is not None:
                result = self.alert_sink(alert)
                if inspect.isawaitable(result):
                    await result
        return alerts
