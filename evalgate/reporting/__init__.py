"""Aggregation and reporting package."""

from evalgate.reporting.aggregation import AlertSink, TrendAggregator
from evalgate.reporting.report import ReportGenerator
from evalgate.reporting.visualization import VisualizationGenerator

__all__ = [
    "AlertSink",
    "TrendAggregator",
    "ReportGenerator",
    "VisualizationGenerator",
]
