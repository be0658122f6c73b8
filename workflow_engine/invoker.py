"""Tool invocation interfaces.

The engine never talks to tools directly. ``tool_code`` steps go through a
``ToolInvoker``; in mock mode a ``MockRegistry`` can answer first with canned
responses.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .runtime_data import copy_value

logger = logging.getLogger(__name__)


class ToolInvoker(ABC):
    """Interface for the external tool invoker collaborator."""

    @abstractmethod
    async def invoke(self, tool_id: str, params: Dict[str, Any]) -> Any:
        """Invoke a tool.

        Args:
            tool_id: Identifier of the tool to call
            params: Already-substituted parameters

        Returns:
            Raw tool result

        Raises:
            Exception: Any error; its message becomes the step error
        """
        pass


class CallableToolInvoker(ToolInvoker):
    """Adapts a plain ``(tool_id, params)`` function, sync or async."""

    def __init__(self, func: Callable[[str, Dict[str, Any]], Union[Any, Awaitable[Any]]]):
        self._func = func

    async def invoke(self, tool_id: str, params: Dict[str, Any]) -> Any:
        result = self._func(tool_id, params)
        if inspect.isawaitable(result):
            result = await result
        return result


class WorkflowTool(ABC):
    """Base interface for tools served by ``RegistryToolInvoker``."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool id."""
        pass

    @abstractmethod
    async def execute_tool(self, arguments: Dict[str, Any]) -> Any:
        """Execute the tool with the provided arguments.

        Args:
            arguments: Dictionary of arguments for the tool

        Returns:
            Tool execution result
        """
        pass


class RegistryToolInvoker(ToolInvoker):
    """Dispatches invocations to registered ``WorkflowTool`` instances."""

    def __init__(self, tools: Optional[List[WorkflowTool]] = None):
        self._tools: Dict[str, WorkflowTool] = {}
        self._logger = logger.getChild("registry")
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: WorkflowTool) -> None:
        self._tools[tool.name] = tool
        self._logger.debug(f"Registered tool: {tool.name}")

    def unregister_tool(self, tool_id: str) -> bool:
        return self._tools.pop(tool_id, None) is not None

    @property
    def tool_ids(self) -> List[str]:
        return list(self._tools)

    async def invoke(self, tool_id: str, params: Dict[str, Any]) -> Any:
        tool = self._tools.get(tool_id)
        if tool is None:
            raise LookupError(f"Tool '{tool_id}' is not registered")
        return await tool.execute_tool(params)


class MockRegistry:
    """
    Canned tool responses for mock mode.

    A registered response can be:
    - a plain value, deep-copied for every invocation
    - an exception instance, raised to simulate a tool failure
    - a callable taking the params, sync or async, whose return value (or
      raised exception) is used
    """

    def __init__(self):
        self._responses: Dict[str, Any] = {}
        self._logger = logger.getChild("mocks")

    def register(self, tool_id: str, response: Any) -> None:
        self._responses[tool_id] = response
        self._logger.debug(f"Registered mock response for tool: {tool_id}")

    def unregister(self, tool_id: str) -> bool:
        return self._responses.pop(tool_id, None) is not None

    def clear(self) -> None:
        self._responses.clear()

    def has(self, tool_id: Optional[str]) -> bool:
        return tool_id is not None and tool_id in self._responses

    async def respond(self, tool_id: str, params: Dict[str, Any]) -> Any:
        """
        Produce the mock result for a tool.

        Raises:
            KeyError: If no mock is registered for ``tool_id``
            Exception: Whatever the registered response raises or is
        """
        response = self._responses[tool_id]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(params)
            if inspect.isawaitable(response):
                response = await response
            return response
        return copy_value(response)

    def __contains__(self, tool_id: str) -> bool:
        return self.has(tool_id)

    def __len__(self) -> int:
        return len(self._responses)
