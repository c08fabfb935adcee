"""Structured evaluation reports as pure projections over run results and trends."""

import structlog

from evalgate.analysis.statistics import StatisticalAnalyzer
from evalgate.models.evaluation import (
    EvaluationReport,
    FailureEntry,
    MetricEntry,
    RunResult,
    TrendRecord,
    TrendSummary,
)

logger = structlog.get_logger()


class ReportGenerator:
    """
    Builds reports from run results and stored trend records.

    Nothing here writes back to storage; inputs are read, never modified.
    """

    def __init__(self, analyzer: StatisticalAnalyzer | None = None):
        self.analyzer = analyzer or StatisticalAnalyzer()

    def build_report(self, run: RunResult) -> EvaluationReport:
        """Flatten a run into the evaluation report format."""
        metrics = [
            MetricEntry(
                evaluator_name=ms.evaluator_name,
                evaluator_version=ms.evaluator_version,
                metric_name=metric_name,
                value=value,
            )
            for ms in run.metric_sets
            for metric_name, value in sorted(ms.metrics.items())
        ]

        failures = []
        if run.failure_report is not None:
            failures = [
                FailureEntry(evaluator_name=f.evaluator_name, kind=f.kind, detail=f.detail)
                for f in run.failure_report.failures
            ]

        return EvaluationReport(
            run_id=run.run_id,
            timestamp=run.timestamp,
            dataset_id=run.dataset_id,
            system_version=run.system_version,
            metrics=metrics,
            failures=failures,
        )

    def trend_summary(
        self,
        records: list[TrendRecord],
        metric_name: str,
        dataset_id: str,
    ) -> TrendSummary:
        """Descriptive statistics over a metric's trend series."""
        values = [r.value(metric_name) for r in records if r.value(metric_name) is not None]
        stats = self.analyzer.calculate_summary_statistics(values)

        return TrendSummary(
            metric_name=metric_name,
            dataset_id=dataset_id,
            window_count=len(values),
            latest=values[-1] if values else None,
            mean=self.analyzer.calculate_confidence_interval(values),
            std=stats["std"],
            min=stats["min"] if values else None,
            max=stats["max"] if values else None,
        )

    def to_markdown(self, report: EvaluationReport) -> str:
        """Render a report as a markdown document."""
        lines = [
            f"# Evaluation Report `{report.run_id}`",
            "",
            f"- **Dataset**: {report.dataset_id}",
            f"- **System version**: {report.system_version}",
            f"- **Timestamp**: {report.timestamp.isoformat()}",
            "",
            "## Metrics",
            "",
            "| Evaluator | Version | Metric | Value |",
            "|---|---|---|---|",
        ]
        for m in report.metrics:
            lines.append(f"| {m.evaluator_name} | {m.evaluator_version} | {m.metric_name} | {m.value:.4f} |")

        if report.failures:
            lines += ["", "## Failures", "", "| Evaluator | Kind | Detail |", "|---|---|---|"]
            for f in report.failures:
                lines.append(f"| {f.evaluator_name} | {f.kind.value} | {f.detail} |")

        return "\n".join(lines) + "\n"
