"""Restricted expression evaluation for workflow conditions, using RestrictedPython."""

from .evaluator import (
    ConditionPolicy,
    EvaluationError,
    EvaluationResult,
    RestrictedConditionEvaluator,
    normalize_operators,
)

__all__ = [
    "ConditionPolicy",
    "EvaluationError",
    "EvaluationResult",
    "RestrictedConditionEvaluator",
    "normalize_operators",
]
