"""Plotly rendering of evaluation reports and metric trends."""

import html

import plotly.graph_objects as go
import structlog

from evalgate.models.evaluation import EvaluationReport, TrendRecord

logger = structlog.get_logger()


class VisualizationGenerator:
    """
    Generates interactive Plotly visualizations for reports.

    Creates:
    - Metric trend lines across windows
    - Per-run metric bar charts
    """

    def __init__(self, template: str = "plotly_white"):
        self.template = template

    def generate_trend_chart(
        self,
        records: list[TrendRecord],
        metric_name: str,
        degraded: bool = False,
        title: str | None = None,
    ) -> str:
        """
        Line chart of one metric across trend windows.

        Returns HTML string with embedded Plotly chart.
        """
        points = [(r.window_start, r.value(metric_name)) for r in records if r.value(metric_name) is not None]

        fig = go.Figure()
        fig.add_trace(go.Scatter(
            x=[p[0] for p in points],
            y=[p[1] for p in points],
            mode='lines+markers',
            name=metric_name,
            line=dict(color='blue', width=2),
            hovertemplate="<b>%{x}</b><br>Value: %{y:.4f}<extra></extra>",
        ))

        if degraded and points:
            fig.add_trace(go.Scatter(
                x=[points[-1][0]],
                y=[points[-1][1]],
                mode='markers',
                name='Degraded',
                marker=dict(size=16, color='red', symbol='x'),
            ))

        fig.update_layout(
            title=dict(text=title or f"{metric_name} trend", font=dict(size=20)),
            xaxis_title="Window start",
            yaxis_title=metric_name,
            template=self.template,
            hovermode='closest',
        )

        return fig.to_html(include_plotlyjs='cdn', full_html=False)

    def generate_metrics_chart(self, report: EvaluationReport) -> str:
        """Bar chart of all metric values in one run, grouped by evaluator."""
        fig = go.Figure()
        evaluators = sorted({m.evaluator_name for m in report.metrics})
        for evaluator in evaluators:
            entries = [m for m in report.metrics if m.evaluator_name == evaluator]
            fig.add_trace(go.Bar(
                x=[m.metric_name for m in entries],
                y=[m.value for m in entries],
                name=evaluator,
            ))

        fig.update_layout(
            title=dict(text=f"Run {report.run_id}", font=dict(size=20)),
            barmode='group',
            template=self.template,
        )
        return fig.to_html(include_plotlyjs='cdn', full_html=False)

    def generate_full_report(
        self,
        report: EvaluationReport,
        trends: dict[str, list[TrendRecord]] | None = None,
        degraded: set[str] | None = None,
    ) -> str:
        """Full standalone HTML page for a run plus optional metric trends."""
        degraded = degraded or set()
        sections = [self.generate_metrics_chart(report)]

        for metric_name, records in (trends or {}).items():
            sections.append(self.generate_trend_chart(
                records,
                metric_name,
                degraded=metric_name in degraded,
            ))

        failure_rows = "".join(
            f"<tr><td>{html.escape(f.evaluator_name)}</td><td>{f.kind.value}</td>"
            f"<td>{html.escape(f.detail)}</td></tr>"
            for f in report.failures
        )
        failures_html = (
            f"<h2>Failures</h2><table><tr><th>Evaluator</th><th>Kind</th><th>Detail</th></tr>"
            f"{failure_rows}</table>"
            if report.failures else ""
        )

        return f"""<!DOCTYPE html>
<html>
<head><title>Evaluation Report {html.escape(report.run_id)}</title></head>
<body style="margin:20px; font-family:sans-serif;">
<h1>Evaluation Report</h1>
<p>Dataset: {html.escape(report.dataset_id)}<br>
System version: {html.escape(report.system_version)}<br>
Timestamp: {report.timestamp.isoformat()}</p>
{failures_html}
{''.join(sections)}
</body>
</html>
"""
