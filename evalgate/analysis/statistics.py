"""Statistics over metric trend windows."""

import numpy as np
from scipy import stats
import structlog

from evalgate.config import get_settings
from evalgate.models.evaluation import ConfidenceInterval, DegradationPolicy

logger = structlog.get_logger()


class StatisticalAnalyzer:
    """
    Numeric helpers for trend reporting and degradation detection.

    Calculates:
    - Confidence intervals for a metric's mean across windows
    - Percentile cuts over trailing windows
    - Summary statistics for reports
    """

    def __init__(self, confidence_level: float | None = None):
        self.confidence_level = confidence_level or get_settings().confidence_level

    def calculate_confidence_interval(
        self,
        values: list[float],
        confidence: float | None = None,
    ) -> ConfidenceInterval:
        """
        Mean and confidence interval for a sample, using the t-distribution.

        Args:
            values: Sample values
            confidence: Confidence level (default: from settings)

        Returns:
            ConfidenceInterval with mean, lower, upper bounds
        """
        confidence = confidence or self.confidence_level

        if not values:
            return ConfidenceInterval(
                value=0.0,
                lower=0.0,
                upper=0.0,
                confidence_level=confidence,
                sample_size=0,
            )

        n = len(values)
        mean = float(np.mean(values))

        if n < 2 or float(np.std(values)) == 0.0:
            return ConfidenceInterval(
                value=mean,
                lower=mean,
                upper=mean,
                confidence_level=confidence,
                sample_size=n,
            )

        se = float(stats.sem(values))
        t_value = stats.t.ppf((1 + confidence) / 2, n - 1)
        margin = se * t_value

        return ConfidenceInterval(
            value=mean,
            lower=mean - margin,
            upper=mean + margin,
            confidence_level=confidence,
            sample_size=n,
        )

    @staticmethod
    def percentile(values: list[float], q: float) -> float:
        """Linear-interpolated percentile (numpy default method)."""
        if not values:
            raise ValueError("percentile of an empty sequence")
        return float(np.percentile(values, q))

    def degradation_cut(self, trailing: list[float], policy: DegradationPolicy) -> float:
        """
        Baseline value the current window is compared against.

        Higher-is-better metrics use the policy percentile of the trailing windows;
        lower-is-better metrics use the mirrored upper percentile.
        """
        q = policy.percentile if policy.higher_is_better else 100.0 - policy.percentile
        return self.percentile(trailing, q)

    def is_degraded(self, current: float, trailing: list[float], policy: DegradationPolicy) -> bool:
        if len(trailing) < policy.min_history:
            return False
        cut = self.degradation_cut(trailing, policy)
        if policy.higher_is_better:
            return current < cut
        return current > cut

    def calculate_summary_statistics(
        self,
        values: list[float],
    ) -> dict:
        """Calculate summary statistics for a series of window values."""
        if not values:
            return {
                "count": 0,
                "mean": 0.0,
                "std": 0.0,
                "min": 0.0,
                "max": 0.0,
                "p10": 0.0,
                "p50": 0.0,
                "p90": 0.0,
            }

        return {
            "count": len(values),
            "mean": float(np.mean(values)),
            "std": float(np.std(values, ddof=1)) if len(values) > 1 else 0.0,
            "min": float(np.min(values)),
            "max": float(np.max(values)),
            "p10": float(np.percentile(values, 10)),
            "p50": float(np.percentile(values, 50)),
            "p90": float(np.percentile(values, 90)),
        }
