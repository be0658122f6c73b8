"""Restricted expression evaluator for workflow conditions.

Condition strings are compiled with RestrictedPython under a policy that only
admits a small boolean/comparison grammar: literals, a handful of constant
names, comparisons, ``and``/``or``/``not``, unary minus and simple arithmetic.
Calls, attribute access, subscripts, lambdas and comprehensions are rejected at
compile time, so nothing in a condition string can reach Python objects.
"""

import ast
import logging
import re
import time
from typing import Any, Dict, Optional
from dataclasses import dataclass

from RestrictedPython import RestrictingNodeTransformer, compile_restricted_eval

logger = logging.getLogger(__name__)

ALLOWED_NODES = (
    ast.Expression,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.Mod,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.Is,
    ast.IsNot,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.List,
    ast.Tuple,
)

CONSTANT_NAMES: Dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": None,
    "True": True,
    "False": False,
    "None": None,
}

_STRING_LITERAL = re.compile(r"""('(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")""")


class EvaluationError(Exception):
    """Exception raised when expression evaluation fails."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


@dataclass
class EvaluationResult:
    """Result of a restricted expression evaluation."""

    result: Any
    execution_time_ms: float
    success: bool
    error_message: Optional[str] = None


class ConditionPolicy(RestrictingNodeTransformer):
    """RestrictedPython policy admitting only the condition grammar."""

    def visit(self, node):
        if not isinstance(node, ALLOWED_NODES):
            self.error(node, f"{node.__class__.__name__} is not allowed in conditions")
            return node
        return super().visit(node)


def normalize_operators(expression: str) -> str:
    """Rewrite JavaScript-style operators outside string literals.

    ``===``/``!==`` become ``==``/``!=``, ``&&``/``||`` become ``and``/``or``
    and a lone ``!`` becomes ``not``.
    """
    parts = _STRING_LITERAL.split(expression)
    for index in range(0, len(parts), 2):
        segment = parts[index]
        segment = segment.replace("!==", "!=").replace("===", "==")
        segment = segment.replace("&&", " and ").replace("||", " or ")
        segment = re.sub(r"!(?!=)", " not ", segment)
        parts[index] = segment
    return "".join(parts).strip()


class RestrictedConditionEvaluator:
    """Evaluates condition expressions in a restricted environment."""

    def __init__(self):
        """Initialize the evaluator."""
        self._logger = logger.getChild(self.__class__.__name__)

    def _create_restricted_globals(self, context: Dict[str, Any]) -> Dict[str, Any]:
        """Globals for evaluation: no builtins, constant names, caller context."""
        restricted_globals: Dict[str, Any] = {"__builtins__": {}}
        restricted_globals.update(CONSTANT_NAMES)
        restricted_globals.update(context)
        return restricted_globals

    def evaluate_expression(
        self,
        expression: str,
        context: Optional[Dict[str, Any]] = None
    ) -> EvaluationResult:
        """Evaluate an expression in the restricted grammar.

        Args:
            expression: The expression to evaluate. JavaScript-style operators
                are normalized first.
            context: Optional names to make available to the expression.

        Returns:
            EvaluationResult containing the result, execution time, and success status.

        Example:
            >>> evaluator = RestrictedConditionEvaluator()
            >>> evaluator.evaluate_expression("5 === 5 && 'a' != 'b'").result
            True
        """
        if context is None:
            context = {}

        start_time = time.perf_counter()
        source = normalize_operators(expression)

        if not source:
            return EvaluationResult(
                result=None,
                execution_time_ms=0.0,
                success=False,
                error_message="Empty expression"
            )

        try:
            compiled = compile_restricted_eval(source, policy=ConditionPolicy)
        except SyntaxError as e:
            error_msg = f"Invalid expression syntax: {str(e)}"
            self._logger.error(f"Syntax error in expression '{expression}': {e}")
            return EvaluationResult(
                result=None,
                execution_time_ms=0.0,
                success=False,
                error_message=error_msg
            )

        if compiled.errors or compiled.code is None:
            error_msg = f"Invalid expression: {', '.join(compiled.errors)}"
            self._logger.error(f"Compilation errors for expression '{expression}': {compiled.errors}")
            return EvaluationResult(
                result=None,
                execution_time_ms=0.0,
                success=False,
                error_message=error_msg
            )

        try:
            result = eval(compiled.code, self._create_restricted_globals(context))
        except NameError as e:
            error_msg = f"Unknown name in expression: {str(e)}"
            self._logger.error(f"Unknown name in expression '{expression}': {e}")
            return EvaluationResult(
                result=None,
                execution_time_ms=0.0,
                success=False,
                error_message=error_msg
            )
        except Exception as e:
            error_msg = f"Error evaluating expression: {str(e)}"
            self._logger.error(f"Runtime error in expression '{expression}': {e}")
            return EvaluationResult(
                result=None,
                execution_time_ms=0.0,
                success=False,
                error_message=error_msg
            )

        execution_time_ms = (time.perf_counter() - start_time) * 1000
        self._logger.debug(
            f"Evaluated expression '{expression}' in {execution_time_ms:.2f}ms"
        )
        return EvaluationResult(
            result=result,
            execution_time_ms=execution_time_ms,
            success=True
        )

    def evaluate_boolean(
        self,
        expression: str,
        context: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Evaluate an expression and coerce the outcome to a boolean.

        Raises:
            EvaluationError: If the expression cannot be compiled or evaluated
        """
        outcome = self.evaluate_expression(expression, context)
        if not outcome.success:
            raise EvaluationError(outcome.error_message or "Evaluation failed")
        return bool(outcome.result)
