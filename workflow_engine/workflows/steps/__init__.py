"""
Workflow Steps

Step type implementations for workflow execution.
"""

from ..definition import STEP_TYPE_CONDITION, STEP_TYPE_TOOL, StepDefinition
from .base import BaseStep
from .condition_step import ConditionStep
from .tool_step import ToolCodeStep

STEP_CLASSES = {
    STEP_TYPE_TOOL: ToolCodeStep,
    STEP_TYPE_CONDITION: ConditionStep,
}


def create_step(definition: StepDefinition) -> BaseStep:
    """
    Create step instance from definition.

    Raises:
        ValueError: If step type not supported
    """
    step_class = STEP_CLASSES.get(definition.type)
    if step_class is None:
        raise ValueError(
            f"Step type '{definition.type}' not supported. "
            f"Supported types: {', '.join(STEP_CLASSES)}"
        )
    return step_class(definition)


__all__ = [
    "BaseStep",
    "ConditionStep",
    "ToolCodeStep",
    "STEP_CLASSES",
    "create_step",
]
