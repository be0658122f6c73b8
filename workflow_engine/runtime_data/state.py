"""
Run State

Step status, step results, and the per-run variable store used for
placeholder substitution and output capture.
"""

import copy
import json
import logging
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass, field, replace

from ..errors import UnresolvedVariableError

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\$\{([^}]+)\}")

_MISSING = object()


class StepStatus(str, Enum):
    """Status of a workflow step within one run."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED)


@dataclass
class StepResult:
    """Result of a step execution.

    ``time_taken`` is wall-clock milliseconds around the invocation only;
    time spent waiting for a concurrency slot is not included.
    """

    step_id: str
    status: StepStatus
    result: Any = None
    error: Optional[str] = None
    time_taken: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    params: Any = None
    execution_count: int = 0
    memory_delta: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCEEDED

    def copy(self) -> "StepResult":
        """Detached copy; values that cannot be copied are shared."""
        return replace(
            self,
            result=copy_value(self.result),
            params=copy_value(self.params),
            warnings=list(self.warnings),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "time_taken": self.time_taken,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "params": self.params,
            "execution_count": self.execution_count,
            "memory_delta": self.memory_delta,
            "warnings": list(self.warnings),
        }


def copy_value(value: Any) -> Any:
    """
    Deep copy a variable or result value.

    Containers are copied item by item; a leaf that cannot be deep-copied,
    such as a client handle or a lock, is shared rather than copied.
    """
    if isinstance(value, dict):
        return {key: copy_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [copy_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(copy_value(item) for item in value)
    try:
        return copy.deepcopy(value)
    except (TypeError, AttributeError, copy.Error) as e:
        logger.debug(f"Sharing value of type {type(value).__name__} that cannot be copied: {e}")
        return value


def stringify(value: Any) -> str:
    """Render a variable value for embedding in a string or expression."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class VariableStore:
    """
    Named values for a single execution.

    Seeded from the caller's context, mutated by ``set`` and by output
    capture. Substitution always works on copies, so the step definitions
    it is applied to are never modified.
    """

    def __init__(self, initial_variables: Optional[Dict[str, Any]] = None):
        """
        Initialize variable store.

        Args:
            initial_variables: Execution context merged in at start
        """
        self.context: Dict[str, Any] = copy_value(initial_variables or {})
        self.variables: Dict[str, Any] = copy_value(initial_variables or {})
        self.output_captures: Dict[str, str] = {}
        self.step_results: Dict[str, Any] = {}

    def get(self, name: str, default: Any = None) -> Any:
        """Get a variable value, or ``default`` when it is not set."""
        return self.variables.get(name, default)

    def set(self, name: str, value: Any) -> Any:
        """Set a variable value and return it."""
        self.variables[name] = value
        return value

    def capture_output(self, step_id: str, variable_name: str) -> None:
        """Bind a step's successful result to a variable name."""
        self.output_captures[step_id] = variable_name

    def process_step_result(self, step_id: str, result: Any) -> Optional[str]:
        """
        Record a successful step result and apply its capture binding.

        Args:
            step_id: Step that produced the result
            result: Step result value

        Returns:
            Name of the variable written, or None if the step has no binding
        """
        self.step_results[step_id] = result
        variable_name = self.output_captures.get(step_id)
        if variable_name:
            self.set(variable_name, result)
            logger.debug(f"Captured output from step {step_id} to variable {variable_name}")
        return variable_name

    def lookup(self, path: str) -> Tuple[bool, Any]:
        """
        Resolve a dotted path.

        Supports:
        - name / name.field / name.0 (variables)
        - steps.step_id[.field] (results of completed steps)
        - context.key (the initial execution context)

        Returns:
            Tuple of (found, value)
        """
        parts = [p for p in path.strip().split(".") if p]
        if not parts:
            return False, None

        head = parts[0]
        if head in self.variables:
            obj = self.variables[head]
            rest = parts[1:]
        elif head == "steps" and len(parts) > 1 and parts[1] in self.step_results:
            obj = self.step_results[parts[1]]
            rest = parts[2:]
        elif head == "context":
            obj = self.context
            rest = parts[1:]
        else:
            return False, None

        for part in rest:
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            elif isinstance(obj, (list, tuple)) and part.isdigit() and int(part) < len(obj):
                obj = obj[int(part)]
            else:
                return False, None

        return True, obj

    def resolve_template(self, template: Any) -> Any:
        """
        Resolve ``${path}`` placeholders in a string.

        A string that is exactly one placeholder resolves to the raw value,
        keeping its type. Otherwise each placeholder is replaced by its
        stringified value. Unknown placeholders are left as they are.
        """
        if not isinstance(template, str):
            return template

        matches = list(PLACEHOLDER_PATTERN.finditer(template))
        if not matches:
            return template

        if len(matches) == 1 and matches[0].group(0) == template:
            found, value = self.lookup(matches[0].group(1))
            return copy_value(value) if found else template

        def replace(match: "re.Match[str]") -> str:
            found, value = self.lookup(match.group(1))
            return stringify(value) if found else match.group(0)

        return PLACEHOLDER_PATTERN.sub(replace, template)

    def substitute(self, obj: Any) -> Any:
        """
        Return a deep copy of ``obj`` with all placeholders resolved.

        Args:
            obj: Parameters structure (dict, list, str or scalar)

        Returns:
            New structure; ``obj`` itself is untouched
        """
        if isinstance(obj, str):
            return self.resolve_template(obj)
        if isinstance(obj, dict):
            return {key: self.substitute(value) for key, value in obj.items()}
        if isinstance(obj, list):
            return [self.substitute(item) for item in obj]
        if isinstance(obj, tuple):
            return tuple(self.substitute(item) for item in obj)
        return copy_value(obj)

    def substitute_expression(self, expression: str) -> str:
        """
        Substitute stringified values into a condition expression.

        Raises:
            UnresolvedVariableError: If a placeholder names an unknown variable
        """

        def replace(match: "re.Match[str]") -> str:
            path = match.group(1).strip()
            found, value = self.lookup(path)
            if not found:
                raise UnresolvedVariableError(path)
            return stringify(value)

        return PLACEHOLDER_PATTERN.sub(replace, expression)

    def snapshot(self) -> Dict[str, Any]:
        """Copy of the current variables."""
        return copy_value(self.variables)

    def __repr__(self) -> str:
        return (
            f"VariableStore(variables={len(self.variables)}, "
            f"captures={len(self.output_captures)})"
        )
