"""
Workflow Definition

Parse and represent workflow definitions from dictionaries, JSON or YAML.

Definitions use either camelCase keys (``toolId``, ``onTrue``,
``concurrencyLimit``) or their snake_case equivalents.
"""

import json
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

from ..errors import ValidationError
from ..runtime_data import copy_value

END = "end"

STEP_TYPE_TOOL = "tool_code"
STEP_TYPE_CONDITION = "condition"
STEP_TYPES = (STEP_TYPE_TOOL, STEP_TYPE_CONDITION)


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class StepDefinition:
    """Workflow step definition."""

    id: str
    type: str
    dependencies: List[str] = field(default_factory=list)

    # tool_code
    tool_id: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    next: Optional[str] = None

    # condition
    expression: Optional[str] = None
    on_true: Optional[str] = None
    on_false: Optional[str] = None

    capture_as: Optional[str] = None
    timeout: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepDefinition":
        """
        Create from dictionary.

        Args:
            data: Step definition dictionary

        Returns:
            StepDefinition instance

        Raises:
            ValidationError: If the step is not a mapping or its fields have
                the wrong shape
        """
        if not isinstance(data, dict):
            message = f"Step must be a mapping, got {type(data).__name__}: {data!r}"
            raise ValidationError(message, [message])

        step_id = str(data.get("id", ""))
        errors = []
        step_type = data.get("type") or (
            STEP_TYPE_CONDITION if "expression" in data else STEP_TYPE_TOOL
        )
        dependencies = _first(data, "dependencies", "depends_on", default=[])
        if isinstance(dependencies, str):
            dependencies = [dependencies]
        if not isinstance(dependencies, list) or not all(
            isinstance(dep, str) for dep in dependencies
        ):
            errors.append(
                f"Step '{step_id}' dependencies must be a list of step ids, "
                f"got {dependencies!r}"
            )
        params = data.get("params") or {}
        if not isinstance(params, dict):
            errors.append(
                f"Step '{step_id}' params must be a mapping, got {type(params).__name__}"
            )
        if errors:
            raise ValidationError(f"Invalid step '{step_id}': {'; '.join(errors)}", errors)

        return cls(
            id=step_id,
            type=step_type,
            dependencies=list(dependencies),
            tool_id=_first(data, "toolId", "tool_id", "tool"),
            params=copy_value(params),
            next=data.get("next"),
            expression=data.get("expression"),
            on_true=_first(data, "onTrue", "on_true"),
            on_false=_first(data, "onFalse", "on_false"),
            capture_as=_first(data, "captureAs", "capture_as", "outputVariable"),
            timeout=data.get("timeout"),
        )

    @property
    def pointer_targets(self) -> List[str]:
        """Pointer successors, excluding ``end``."""
        if self.type == STEP_TYPE_CONDITION:
            targets = [self.on_true, self.on_false]
        else:
            targets = [self.next]
        return [t for t in targets if t and t != END]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary using the camelCase wire names."""
        result: Dict[str, Any] = {"id": self.id, "type": self.type}
        if self.dependencies:
            result["dependencies"] = list(self.dependencies)
        if self.type == STEP_TYPE_TOOL:
            result["toolId"] = self.tool_id
            if self.params:
                result["params"] = copy_value(self.params)
            if self.next:
                result["next"] = self.next
        elif self.type == STEP_TYPE_CONDITION:
            result["expression"] = self.expression
            if self.on_true:
                result["onTrue"] = self.on_true
            if self.on_false:
                result["onFalse"] = self.on_false
        if self.capture_as:
            result["captureAs"] = self.capture_as
        if self.timeout is not None:
            result["timeout"] = self.timeout
        return result


@dataclass(frozen=True)
class WorkflowDefinition:
    """
    Workflow definition.

    Treated as immutable once registered; runs only ever read it.
    """

    id: str
    steps: List[StepDefinition] = field(default_factory=list)
    concurrency_limit: Optional[int] = None
    description: str = ""
    version: str = "1.0.0"
    outputs: Dict[str, Any] = field(default_factory=dict)
    halt_on_failure: Optional[bool] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDefinition":
        """
        Create from dictionary.

        Args:
            data: Workflow definition dictionary

        Returns:
            WorkflowDefinition instance

        Raises:
            ValidationError: If ``steps`` is not a list of step mappings
        """
        if not isinstance(data, dict):
            message = f"Workflow must be a mapping, got {type(data).__name__}"
            raise ValidationError(message, [message])
        if "workflow" in data and isinstance(data["workflow"], dict):
            data = data["workflow"]

        workflow_id = str(_first(data, "id", "name", default=""))
        raw_steps = data.get("steps") or []
        if not isinstance(raw_steps, list):
            message = f"Workflow '{workflow_id}' steps must be a list"
            raise ValidationError(message, [message])

        steps = []
        errors: List[str] = []
        for raw_step in raw_steps:
            try:
                steps.append(StepDefinition.from_dict(raw_step))
            except ValidationError as e:
                errors.extend(e.errors)
        if errors:
            raise ValidationError(
                f"Invalid workflow '{workflow_id}': {'; '.join(errors)}", errors
            )

        concurrency_limit = _first(
            data, "concurrencyLimit", "concurrency_limit"
        )

        return cls(
            id=workflow_id,
            steps=steps,
            concurrency_limit=concurrency_limit,
            description=data.get("description", ""),
            version=str(data.get("version", "1.0.0")),
            outputs=copy_value(_first(data, "outputs", "output", default={})),
            halt_on_failure=_first(data, "haltOnFailure", "halt_on_failure"),
            metadata=copy_value(data.get("metadata") or {}),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "WorkflowDefinition":
        """
        Parse workflow from a JSON string.

        Raises:
            ValueError: If the JSON is invalid
        """
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}")
        if not isinstance(data, dict):
            raise ValueError("Workflow JSON must be an object")
        return cls.from_dict(data)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "WorkflowDefinition":
        """
        Parse workflow from YAML string.

        Raises:
            ValueError: If YAML is invalid
        """
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML: {e}")

        if not isinstance(data, dict):
            raise ValueError("Workflow YAML must be a mapping")
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, file_path: str) -> "WorkflowDefinition":
        """
        Load workflow from a ``.json``, ``.yaml`` or ``.yml`` file.

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If the content is invalid
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Workflow file not found: {file_path}")

        with open(path, "r") as f:
            text = f.read()

        if path.suffix.lower() == ".json":
            return cls.from_json(text)
        return cls.from_yaml(text)

    @property
    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def get_step(self, step_id: str) -> Optional[StepDefinition]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {
            "id": self.id,
            "version": self.version,
            "description": self.description,
            "concurrencyLimit": self.concurrency_limit,
            "steps": [step.to_dict() for step in self.steps],
            "metadata": copy_value(self.metadata),
        }
        if self.outputs:
            result["outputs"] = copy_value(self.outputs)
        if self.halt_on_failure is not None:
            result["haltOnFailure"] = self.halt_on_failure
        return result

    def __repr__(self) -> str:
        return (
            f"WorkflowDefinition(id='{self.id}', "
            f"version='{self.version}', steps={len(self.steps)})"
        )
