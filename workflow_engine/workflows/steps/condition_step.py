"""
Condition Step

``condition`` steps: substitute variables into the expression and evaluate it
with the restricted evaluator. The boolean outcome is the step result; the
scheduler uses it to pick ``onTrue`` or ``onFalse``.
"""

from typing import TYPE_CHECKING

from utils.pyeval import EvaluationError

from ...errors import ConditionEvaluationError, UnresolvedVariableError
from ...runtime_data import VariableStore
from .base import BaseStep

if TYPE_CHECKING:
    from ..executor import StepExecutor


class ConditionStep(BaseStep):
    """Evaluates ``definition.expression`` to a boolean."""

    def prepare(self, variables: VariableStore) -> str:
        try:
            return variables.substitute_expression(self.definition.expression or "")
        except UnresolvedVariableError as e:
            raise ConditionEvaluationError(
                self.step_id,
                f"Cannot evaluate condition '{self.definition.expression}': {e}",
            ) from e

    async def run(self, payload: str, executor: "StepExecutor", mode: str) -> bool:
        try:
            return executor.evaluator.evaluate_boolean(payload)
        except EvaluationError as e:
            raise ConditionEvaluationError(
                self.step_id,
                f"Cannot evaluate condition '{payload}': {e}",
            ) from e
