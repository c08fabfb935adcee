"""Base evaluator interface."""

from abc import ABC, abstractmethod
from typing import Mapping

from evalgate.evaluation.dataset import Dataset
from evalgate.models.evaluation import MetricSet


class BaseEvaluator(ABC):
    """
    Optional class-based form of an evaluator.

    The registry only needs a callable ``fn(dataset, system_version)``; subclasses of
    this class bundle that callable with its name, version and tolerance so they can
    be registered in one call.
    """

    #: Declared tolerance band for stochastic evaluators. Zero means deterministic.
    tolerance: float = 0.0
    description: str = ""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the evaluator name."""
        ...

    @property
    @abstractmethod
    def version(self) -> str:
        """Return the evaluator version."""
        ...

    @abstractmethod
    async def evaluate(
        self,
        dataset: Dataset,
        system_version: str,
    ) -> Mapping[str, float] | MetricSet:
        """
        Score a dataset.

        Args:
            dataset: Frozen dataset snapshot
            system_version: Version of the system under evaluation

        Returns:
            Mapping of metric name to value, or a complete MetricSet
        """
        ...

    async def __call__(self, dataset: Dataset, system_version: str):
        return await self.evaluate(dataset, system_version)
