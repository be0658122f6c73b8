import asyncio
from typing import Any, Dict, List

import pytest

from config import EngineSettings
from workflow_engine import WorkflowEngine


class ConcurrencyTracker:
    """Async mock response that sleeps and records how many calls overlap."""

    def __init__(self, delay: float = 0.05, result: Any = None):
        self.delay = delay
        self.result = result
        self.active = 0
        self.max_active = 0
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, params: Dict[str, Any]) -> Any:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.calls.append(params)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        return self.result if self.result is not None else {"ok": True}


def tool_step(step_id: str, tool_id: str = None, **extra) -> Dict[str, Any]:
    step = {"id": step_id, "type": "tool_code", "toolId": tool_id or step_id}
    step.update(extra)
    return step


def condition_step(step_id: str, expression: str, **extra) -> Dict[str, Any]:
    step = {"id": step_id, "type": "condition", "expression": expression}
    step.update(extra)
    return step


@pytest.fixture
def settings():
    """Engine settings independent of the environment."""
    return EngineSettings(step_timeout_seconds=5.0)


@pytest.fixture
def engine(settings):
    """A fresh engine with no invoker."""
    return WorkflowEngine(settings=settings)
