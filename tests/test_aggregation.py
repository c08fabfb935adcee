"""Tests for trend aggregation, degradation detection and reporting."""

from datetime import timedelta

import pytest

from evalgate.analysis.statistics import StatisticalAnalyzer
from evalgate.models.evaluation import (
    DegradationPolicy,
    EvaluatorFailure,
    FailureKind,
    MetricSet,
    PartialFailureReport,
    RunResult,
)
from evalgate.reporting.aggregation import TrendAggregator
from evalgate.reporting.report import ReportGenerator
from evalgate.reporting.visualization import VisualizationGenerator

DATASET = "reference:golden"


def _metric_set(value, metric="accuracy", dataset_id=DATASET):
    return MetricSet(
        evaluator_name="judge",
        evaluator_version="1.0",
        dataset_id=dataset_id,
        system_version="v1",
        metrics={metric: value},
    )


async def _ingest_series(aggregator, values, t0, metric="accuracy"):
    for i, value in enumerate(values):
        start = t0 + timedelta(days=i)
        await aggregator.ingest(_metric_set(value, metric), start, start + timedelta(days=1))


class TestStatisticalAnalyzer:

    def test_percentile_linear(self):
        analyzer = StatisticalAnalyzer(0.95)
        assert analyzer.percentile([0.90, 0.91, 0.89, 0.92, 0.88], 10) == pytest.approx(0.884)

    def test_is_degraded_flips_for_lower_is_better(self):
        analyzer = StatisticalAnalyzer(0.95)
        trailing = [100.0, 110.0, 105.0, 95.0, 102.0]
        policy = DegradationPolicy(percentile=10, trailing_windows=5, higher_is_better=False)

        assert analyzer.is_degraded(200.0, trailing, policy)
        assert not analyzer.is_degraded(50.0, trailing, policy)

    def test_min_history(self):
        analyzer = StatisticalAnalyzer(0.95)
        policy = DegradationPolicy(min_history=3)
        assert not analyzer.is_degraded(0.1, [0.9, 0.9], policy)

    def test_confidence_interval(self):
        analyzer = StatisticalAnalyzer(0.95)
        ci = analyzer.calculate_confidence_interval([0.8, 0.82, 0.84, 0.86])

        assert ci.value == pytest.approx(0.83)
        assert ci.lower < ci.value < ci.upper
        assert ci.sample_size == 4

    def test_degenerate_interval(self):
        analyzer = StatisticalAnalyzer(0.95)
        ci = analyzer.calculate_confidence_interval([0.5])
        assert ci.lower == ci.upper == 0.5


class TestTrendAggregator:

    @pytest.mark.asyncio
    async def test_degradation_detected(self, aggregator, t0):
        await _ingest_series(aggregator, [0.90, 0.91, 0.89, 0.92, 0.88, 0.60], t0)
        policy = DegradationPolicy(percentile=10, trailing_windows=5)

        assert await aggregator.detect_degradation("accuracy", DATASET, policy)

    @pytest.mark.asyncio
    async def test_stable_series_not_degraded(self, aggregator, t0):
        await _ingest_series(aggregator, [0.90, 0.91, 0.89, 0.92, 0.88, 0.90], t0)
        policy = DegradationPolicy(percentile=10, trailing_windows=5)

        assert not await aggregator.detect_degradation("accuracy", DATASET, policy)

    @pytest.mark.asyncio
    async def test_single_window_not_degraded(self, aggregator, t0):
        await _ingest_series(aggregator, [0.10], t0)
        assert not await aggregator.detect_degradation("accuracy", DATASET, DegradationPolicy())

    @pytest.mark.asyncio
    async def test_lower_is_better(self, aggregator, t0):
        await _ingest_series(aggregator, [120.0, 118.0, 125.0, 122.0, 119.0, 400.0], t0, metric="latency_ms")
        policy = DegradationPolicy(percentile=10, trailing_windows=5, higher_is_better=False)

        assert await aggregator.detect_degradation("latency_ms", DATASET, policy)

    @pytest.mark.asyncio
    async def test_trend_ordered_by_window(self, aggregator, t0):
        # Ingest out of window order
        for day, value in [(2, 0.3), (0, 0.1), (1, 0.2)]:
            start = t0 + timedelta(days=day)
            await aggregator.ingest(_metric_set(value), start, start + timedelta(days=1))

        records = await aggregator.trend("accuracy", DATASET, 10)
        assert [r.value("accuracy") for r in records] == [0.1, 0.2, 0.3]

        last_two = await aggregator.trend("accuracy", DATASET, 2)
        assert [r.value("accuracy") for r in last_two] == [0.2, 0.3]

    @pytest.mark.asyncio
    async def test_trend_scoped_to_dataset_and_metric(self, aggregator, t0):
        await aggregator.ingest(_metric_set(0.5), t0, t0)
        await aggregator.ingest(_metric_set(0.7, dataset_id="reference:other"), t0, t0)
        await aggregator.ingest(_metric_set(0.9, metric="recall"), t0, t0)

        records = await aggregator.trend("accuracy", DATASET, 10)
        assert [r.value("accuracy") for r in records] == [0.5]

    @pytest.mark.asyncio
    async def test_invalid_window(self, aggregator, t0):
        with pytest.raises(ValueError):
            await aggregator.ingest(_metric_set(0.5), t0, t0 - timedelta(days=1))
        with pytest.raises(ValueError):
            await aggregator.trend("accuracy", DATASET, 0)

    @pytest.mark.asyncio
    async def test_ingest_many_is_all_or_nothing(self, aggregator, t0):
        good = _metric_set(0.5).model_copy(update={"window_start": t0, "window_end": t0})
        reversed_window = _metric_set(0.6).model_copy(
            update={"window_start": t0, "window_end": t0 - timedelta(days=1)}
        )

        with pytest.raises(ValueError):
            await aggregator.ingest_many([good, reversed_window])
        assert await aggregator.trend("accuracy", DATASET, 10) == []

        records = await aggregator.ingest_many([good, _metric_set(0.7)])
        assert len(records) == 2
        assert len(await aggregator.trend("accuracy", DATASET, 10)) == 2

    @pytest.mark.asyncio
    async def test_check_alerts_dispatches(self, session_factory, t0):
        alerts = []
        aggregator = TrendAggregator(session_factory, StatisticalAnalyzer(0.95), alert_sink=alerts.append)
        await _ingest_series(aggregator, [0.90, 0.91, 0.89, 0.92, 0.88, 0.60], t0)

        raised = await aggregator.check_alerts(
            ["accuracy", "missing_metric"],
            DATASET,
            DegradationPolicy(percentile=10, trailing_windows=5),
        )

        assert len(raised) == 1
        assert alerts == raised
        assert raised[0].current_value == 0.60
        assert raised[0].baseline_value == pytest.approx(0.884)
        assert raised[0].window_start == t0 + timedelta(days=5)


class TestReportGenerator:

    def _run(self):
        return RunResult(
            run_id="run-1",
            dataset_id=DATASET,
            system_version="v7",
            metric_sets=[
                MetricSet(
                    evaluator_name="judge",
                    evaluator_version="1.0",
                    dataset_id=DATASET,
                    system_version="v7",
                    metrics={"recall": 0.7, "accuracy": 0.9},
                ),
            ],
            failure_report=PartialFailureReport(
                run_id="run-1",
                failures=[EvaluatorFailure(evaluator_name="slow", kind=FailureKind.TIMEOUT, detail="exceeded 1.000s")],
                succeeded=["judge"],
            ),
        )

    def test_build_report(self):
        report = ReportGenerator(StatisticalAnalyzer(0.95)).build_report(self._run())

        assert [m.metric_name for m in report.metrics] == ["accuracy", "recall"]
        assert report.failures[0].evaluator_name == "slow"
        assert report.failures[0].kind == FailureKind.TIMEOUT

    def test_markdown(self):
        generator = ReportGenerator(StatisticalAnalyzer(0.95))
        markdown = generator.to_markdown(generator.build_report(self._run()))

        assert "# Evaluation Report `run-1`" in markdown
        assert "| judge | 1.0 | accuracy | 0.9000 |" in markdown
        assert "## Failures" in markdown
        assert "Timeout" in markdown

    @pytest.mark.asyncio
    async def test_trend_summary_and_html(self, aggregator, t0):
        await _ingest_series(aggregator, [0.8, 0.82, 0.84], t0)
        records = await aggregator.trend("accuracy", DATASET, 10)

        generator = ReportGenerator(StatisticalAnalyzer(0.95))
        summary = generator.trend_summary(records, "accuracy", DATASET)
        assert summary.window_count == 3
        assert summary.latest == 0.84
        assert summary.min == 0.8

        report = generator.build_report(self._run())
        html = VisualizationGenerator().generate_full_report(report, {"accuracy": records}, {"accuracy"})
        assert "run-1" in html
        assert "<html" in html.lower()
