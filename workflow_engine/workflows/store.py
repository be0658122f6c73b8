"""
Workflow Store

Registered workflow definitions, their compiled step graphs, and the mock
responses used in mock mode. Owned by one engine; nothing here is global.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Union

from ..errors import ValidationError, WorkflowNotFoundError
from ..invoker import MockRegistry
from .definition import WorkflowDefinition
from .graph import StepGraph, build_graph

logger = logging.getLogger(__name__)


def calculate_complexity(definition: WorkflowDefinition) -> str:
    """Classify a workflow as ``simple``, ``medium`` or ``complex``."""
    step_count = len(definition.steps)
    dependency_count = sum(len(step.dependencies) for step in definition.steps)

    if step_count <= 3 and dependency_count <= 2:
        return "simple"
    if step_count <= 10 and dependency_count <= 8:
        return "medium"
    return "complex"


class WorkflowStore:
    """Definitions, graphs and mocks for one engine instance."""

    def __init__(self):
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._graphs: Dict[str, StepGraph] = {}
        self._metadata: Dict[str, Dict[str, Any]] = {}
        self.mocks = MockRegistry()
        self._logger = logger.getChild("store")

    def register(
        self,
        definition: Union[WorkflowDefinition, Dict[str, Any]],
        overwrite: bool = True,
    ) -> str:
        """
        Validate and register a workflow.

        Args:
            definition: WorkflowDefinition or its dictionary form
            overwrite: Replace an existing workflow with the same id

        Returns:
            Workflow id

        Raises:
            ValidationError: If the definition is invalid, or the id is taken
                and ``overwrite`` is False
        """
        if isinstance(definition, dict):
            definition = WorkflowDefinition.from_dict(definition)

        graph = build_graph(definition)

        if definition.id in self._definitions and not overwrite:
            message = f"Workflow '{definition.id}' is already registered"
            raise ValidationError(message, [message])

        self._definitions[definition.id] = definition
        self._graphs[definition.id] = graph
        self._metadata[definition.id] = {
            "step_count": len(definition.steps),
            "dependency_count": sum(len(s.dependencies) for s in definition.steps),
            "complexity": calculate_complexity(definition),
            "registered_at": datetime.now().isoformat(),
        }

        self._logger.info(
            f"Registered workflow {definition.id} "
            f"({len(definition.steps)} steps, {self._metadata[definition.id]['complexity']})"
        )
        return definition.id

    def unregister(self, workflow_id: str) -> bool:
        """Remove a workflow. Returns False if it was not registered."""
        if workflow_id not in self._definitions:
            return False
        del self._definitions[workflow_id]
        del self._graphs[workflow_id]
        del self._metadata[workflow_id]
        self._logger.info(f"Unregistered workflow {workflow_id}")
        return True

    def get(self, workflow_id: str) -> WorkflowDefinition:
        """
        Raises:
            WorkflowNotFoundError: If the workflow is not registered
        """
        definition = self._definitions.get(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
        return definition

    def get_graph(self, workflow_id: str) -> StepGraph:
        """
        Raises:
            WorkflowNotFoundError: If the workflow is not registered
        """
        graph = self._graphs.get(workflow_id)
        if graph is None:
            raise WorkflowNotFoundError(f"Workflow '{workflow_id}' not found")
        return graph

    def get_metadata(self, workflow_id: str) -> Dict[str, Any]:
        self.get(workflow_id)
        return dict(self._metadata[workflow_id])

    def list(self) -> List[Dict[str, Any]]:
        """Summaries of all registered workflows, in registration order."""
        return [
            {
                "id": workflow_id,
                "description": definition.description,
                "version": definition.version,
                **self._metadata[workflow_id],
            }
            for workflow_id, definition in self._definitions.items()
        ]

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
