"""
Tool Step

``tool_code`` steps: substitute params and invoke a tool, or answer from the
mock registry in mock mode.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict

from ...errors import StepExecutionError
from ...runtime_data import VariableStore
from .base import BaseStep

if TYPE_CHECKING:
    from ..executor import StepExecutor

logger = logging.getLogger(__name__)


class ToolCodeStep(BaseStep):
    """Invokes ``definition.tool_id`` with the substituted params."""

    def prepare(self, variables: VariableStore) -> Dict[str, Any]:
        return variables.substitute(self.definition.params)

    async def run(self, payload: Dict[str, Any], executor: "StepExecutor", mode: str) -> Any:
        tool_id = self.definition.tool_id

        if mode == "mock" and executor.mocks.has(tool_id):
            logger.debug(f"Using mock response for step {self.step_id} (tool {tool_id})")
            return await executor.mocks.respond(tool_id, payload)

        if executor.invoker is None:
            raise StepExecutionError(
                self.step_id,
                f"No tool invoker configured for tool '{tool_id}'"
                + (" and no mock registered" if mode == "mock" else ""),
            )

        return await executor.invoker.invoke(tool_id, payload)
