"""
Tests for tool invokers and the mock registry
"""

import pytest

from workflow_engine import (
    CallableToolInvoker,
    MockRegistry,
    RegistryToolInvoker,
    WorkflowTool,
)


class UpperTool(WorkflowTool):
    @property
    def name(self):
        return "upper"

    async def execute_tool(self, arguments):
        return arguments["text"].upper()


class TestInvokers:
    """Tests for ToolInvoker implementations."""

    @pytest.mark.asyncio
    async def test_callable_sync_and_async(self):
        async def async_func(tool_id, params):
            return (tool_id, params)

        sync_invoker = CallableToolInvoker(lambda tool_id, params: params["n"] * 2)
        async_invoker = CallableToolInvoker(async_func)

        assert await sync_invoker.invoke("double", {"n": 4}) == 8
        assert await async_invoker.invoke("echo", {"x": 1}) == ("echo", {"x": 1})

    @pytest.mark.asyncio
    async def test_registry_dispatch(self):
        invoker = RegistryToolInvoker([UpperTool()])

        assert invoker.tool_ids == ["upper"]
        assert await invoker.invoke("upper", {"text": "hi"}) == "HI"

    @pytest.mark.asyncio
    async def test_registry_unknown_tool(self):
        invoker = RegistryToolInvoker([UpperTool()])
        assert invoker.unregister_tool("upper") is True

        with pytest.raises(LookupError, match="not registered"):
            await invoker.invoke("upper", {"text": "hi"})


class TestMockRegistry:
    """Tests for MockRegistry."""

    @pytest.mark.asyncio
    async def test_value_exception_and_callable(self):
        mocks = MockRegistry()
        mocks.register("value", {"n": 1})
        mocks.register("error", KeyError("gone"))
        mocks.register("func", lambda params: params["n"] + 1)

        assert await mocks.respond("value", {}) == {"n": 1}
        assert await mocks.respond("func", {"n": 1}) == 2
        with pytest.raises(KeyError):
            await mocks.respond("error", {})

    def test_membership(self):
        mocks = MockRegistry()
        mocks.register("a", 1)

        assert "a" in mocks
        assert mocks.has(None) is False
        assert len(mocks) == 1
        assert mocks.unregister("a") is True
        assert mocks.unregister("a") is False

        mocks.register("b", 2)
        mocks.clear()
        assert len(mocks) == 0
