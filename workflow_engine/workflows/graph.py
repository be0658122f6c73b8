"""
Step Graph

Validate a workflow definition and build the graph the scheduler walks:
dependency edges (static prerequisites, must form a DAG) and pointer edges
(``next`` / ``onTrue`` / ``onFalse`` transitions, cycles allowed).
"""

import logging
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from ..errors import CyclicDependencyError, ValidationError
from .definition import (
    END,
    STEP_TYPE_CONDITION,
    STEP_TYPE_TOOL,
    STEP_TYPES,
    StepDefinition,
    WorkflowDefinition,
)

logger = logging.getLogger(__name__)


@dataclass
class StepGraph:
    """Validated, normalized form of a workflow definition."""

    workflow_id: str
    concurrency_limit: Optional[int]
    steps: Dict[str, StepDefinition] = field(default_factory=dict)
    order: Dict[str, int] = field(default_factory=dict)
    dependencies: Dict[str, List[str]] = field(default_factory=dict)
    dependents: Dict[str, List[str]] = field(default_factory=dict)
    successors: Dict[str, List[str]] = field(default_factory=dict)
    pointer_predecessors: Dict[str, List[str]] = field(default_factory=dict)
    entry: List[str] = field(default_factory=list)

    def has_incoming_pointer(self, step_id: str) -> bool:
        return bool(self.pointer_predecessors.get(step_id))

    def sort_by_definition(self, step_ids) -> List[str]:
        return sorted(step_ids, key=lambda step_id: self.order[step_id])

    def __len__(self) -> int:
        return len(self.steps)


def _find_dependency_cycle(definition: WorkflowDefinition) -> Optional[List[str]]:
    """Depth-first search over dependency edges; returns the first cycle found."""
    known = set(definition.step_ids)
    edges = {
        step.id: [dep for dep in step.dependencies if dep in known]
        for step in definition.steps
    }
    visiting: List[str] = []
    state: Dict[str, str] = {}

    def visit(step_id: str) -> Optional[List[str]]:
        state[step_id] = "visiting"
        visiting.append(step_id)
        for dep in edges.get(step_id, []):
            if state.get(dep) == "visiting":
                start = visiting.index(dep)
                return visiting[start:] + [dep]
            if dep not in state:
                cycle = visit(dep)
                if cycle:
                    return cycle
        visiting.pop()
        state[step_id] = "done"
        return None

    for step in definition.steps:
        if step.id not in state:
            cycle = visit(step.id)
            if cycle:
                return cycle
    return None


def validate_definition(definition: WorkflowDefinition) -> List[str]:
    """
    Collect structural problems in a definition.

    Does not check for dependency cycles; see ``build_graph``.

    Returns:
        List of validation errors (empty if valid)
    """
    errors: List[str] = []

    if not definition.id:
        errors.append("Workflow must have an id")

    if not definition.steps:
        errors.append("Workflow must have at least one step")

    limit = definition.concurrency_limit
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
        errors.append(f"concurrencyLimit must be a positive integer, got {limit!r}")

    seen = set()
    for index, step in enumerate(definition.steps):
        if not step.id:
            errors.append(f"Step at index {index} missing id")
            continue
        if step.id == END:
            errors.append(f"Step id '{END}' is reserved")
        if step.id in seen:
            errors.append(f"Duplicate step id: {step.id}")
        seen.add(step.id)

    known = set(definition.step_ids)

    for step in definition.steps:
        if step.type not in STEP_TYPES:
            errors.append(
                f"Step '{step.id}' has invalid type '{step.type}'. "
                f"Must be one of: {', '.join(STEP_TYPES)}"
            )
        elif step.type == STEP_TYPE_TOOL:
            if not step.tool_id:
                errors.append(f"Step '{step.id}' missing toolId")
        elif step.type == STEP_TYPE_CONDITION:
            if not step.expression or not str(step.expression).strip():
                errors.append(f"Condition step '{step.id}' must specify 'expression'")
            if not step.on_true and not step.on_false:
                errors.append(
                    f"Condition step '{step.id}' must specify 'onTrue' or 'onFalse'"
                )

        for dep_id in step.dependencies:
            if dep_id == END:
                continue
            if dep_id not in known:
                errors.append(f"Step '{step.id}' has invalid dependency: {dep_id}")

        for target in (step.next, step.on_true, step.on_false):
            if target and target != END and target not in known:
                errors.append(f"Step '{step.id}' points to unknown step: {target}")

        if step.timeout is not None and (
            not isinstance(step.timeout, (int, float)) or step.timeout <= 0
        ):
            errors.append(f"Step '{step.id}' timeout must be a positive number")

    return errors


def build_graph(definition: WorkflowDefinition) -> StepGraph:
    """
    Validate a definition and build its step graph.

    Args:
        definition: Parsed workflow definition

    Returns:
        StepGraph ready for scheduling

    Raises:
        CyclicDependencyError: If dependency edges contain a cycle
        ValidationError: For any other malformed definition
    """
    errors = validate_definition(definition)
    cycle = _find_dependency_cycle(definition)

    if errors:
        if cycle:
            errors.append(f"Cyclic dependency detected: {' -> '.join(cycle)}")
        raise ValidationError(
            f"Invalid workflow '{definition.id}': {'; '.join(errors)}", errors
        )
    if cycle:
        raise CyclicDependencyError(cycle)

    graph = StepGraph(
        workflow_id=definition.id,
        concurrency_limit=definition.concurrency_limit,
    )

    for index, step in enumerate(definition.steps):
        graph.steps[step.id] = step
        graph.order[step.id] = index
        graph.dependencies[step.id] = [d for d in step.dependencies if d != END]
        graph.dependents[step.id] = []
        graph.successors[step.id] = step.pointer_targets
        graph.pointer_predecessors[step.id] = []

    for step in definition.steps:
        for dep_id in graph.dependencies[step.id]:
            graph.dependents[dep_id].append(step.id)
        for target in graph.successors[step.id]:
            if step.id not in graph.pointer_predecessors[target]:
                graph.pointer_predecessors[target].append(step.id)

    graph.entry = [
        step.id
        for step in definition.steps
        if not graph.dependencies[step.id] and not graph.has_incoming_pointer(step.id)
    ]

    # A pointer loop back to the first step still starts there.
    first = definition.steps[0].id
    if not graph.entry and not graph.dependencies[first]:
        graph.entry = [first]

    if not graph.entry:
        message = (
            f"Workflow '{definition.id}' has no entry step: every step has a "
            f"dependency or an incoming pointer"
        )
        raise ValidationError(message, [message])

    logger.debug(
        f"Built graph for workflow '{definition.id}': {len(graph)} steps, "
        f"entry={graph.entry}"
    )
    return graph
