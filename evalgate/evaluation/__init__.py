"""Evaluation framework package."""

from evalgate.evaluation.base import BaseEvaluator
from evalgate.evaluation.builtin import (
    DecisionConsistencyEvaluator,
    EscalationRateEvaluator,
    register_builtin_evaluators,
)
from evalgate.evaluation.dataset import Dataset
from evalgate.evaluation.registry import EvaluatorRegistry, RegisteredEvaluator
from evalgate.evaluation.runner import EvaluationRunner, within_tolerance

__all__ = [
    "BaseEvaluator",
    "DecisionConsistencyEvaluator",
    "EscalationRateEvaluator",
    "register_builtin_evaluators",
    "Dataset",
    "EvaluatorRegistry",
    "RegisteredEvaluator",
    "EvaluationRunner",
    "within_tolerance",
]
