"""
Base Step

Abstract base class for all workflow step types.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from ...runtime_data import VariableStore
from ..definition import StepDefinition

if TYPE_CHECKING:
    from ..executor import StepExecutor


class BaseStep(ABC):
    """
    Abstract base class for workflow steps.

    A step is split in two phases so the executor can time only the
    invocation: ``prepare`` substitutes variables into a fresh copy of the
    step's payload, ``run`` does the work.
    """

    def __init__(self, definition: StepDefinition):
        """
        Initialize step.

        Args:
            definition: Step definition from workflow
        """
        self.definition = definition
        self.step_id = definition.id

    @abstractmethod
    def prepare(self, variables: VariableStore) -> Any:
        """
        Build the substituted payload for this invocation.

        Args:
            variables: Variable store of the current run (read only)

        Returns:
            Payload handed to ``run``; also recorded on the step result
        """
        pass

    @abstractmethod
    async def run(self, payload: Any, executor: "StepExecutor", mode: str) -> Any:
        """
        Execute the step.

        Args:
            payload: Value returned by ``prepare``
            executor: Executor providing the invoker, mocks and evaluator
            mode: Execution mode, ``real`` or ``mock``

        Returns:
            Raw step result

        Raises:
            Exception: Any failure; the executor records it on the step result
        """
        pass

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"{self.__class__.__name__}("
            f"id='{self.step_id}', "
            f"type='{self.definition.type}')"
        )
