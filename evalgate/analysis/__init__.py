"""Analysis package."""

from evalgate.analysis.statistics import StatisticalAnalyzer

__all__ = ["StatisticalAnalyzer"]
