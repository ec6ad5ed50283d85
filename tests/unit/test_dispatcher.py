"""Unit tests for tool call dispatch."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from adapters.base import ConnectionState
from gateway.dispatcher import Dispatcher
from models.errors import AdapterCallError, ToolErrorKind
from models.schema import Failure, Success, ToolCallRequest, ToolDescriptor, ToolRoute, ToolSource
from tests.conftest import FakeToolAdapter, hosted_descriptor

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string"},
        "count": {"type": "integer", "default": 10},
    },
    "required": ["query"],
}


def search_with_fallback(fallback: bool = True) -> ToolDescriptor:
    """brave_web_search served by 'hosted', backed up by local_search."""
    return ToolDescriptor(
        name="brave_web_search",
        parameters=SEARCH_SCHEMA,
        source=ToolSource.HOSTED_PRIMARY,
        routes=(
            ToolRoute(
                adapter="hosted",
                source=ToolSource.HOSTED_PRIMARY,
                remote_name="brave_web_search",
            ),
            ToolRoute(adapter="local", source=ToolSource.LOCAL, remote_name="local_search"),
        ),
        fallback=fallback,
    )


class TestResolution:
    """Tests for unknown tools and argument validation."""

    @pytest.mark.asyncio
    async def test_unknown_tool_fails_without_attempt(self, dispatcher, hosted_adapter):
        request = ToolCallRequest(id="call_1", tool_name="nope", arguments={})

        result = await dispatcher.execute(request)

        assert result.id == "call_1"
        assert isinstance(result.outcome, Failure)
        assert result.outcome.error == ToolErrorKind.UNKNOWN_TOOL
        assert result.elapsed_ms == 0
        assert result.to_envelope() == {"success": False, "error": "Unknown tool: nope"}
        assert hosted_adapter.calls == []

    @pytest.mark.asyncio
    async def test_invalid_arguments_rejected_before_any_call(
        self, dispatcher, registry, hosted_adapter
    ):
        registry.register(hosted_descriptor("brave_web_search", parameters=SEARCH_SCHEMA))

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"count": 3})
        )

        assert result.outcome.error == ToolErrorKind.INVALID_ARGUMENTS
        assert "query" in result.outcome.message
        assert hosted_adapter.calls == []

    @pytest.mark.asyncio
    async def test_wrong_type_rejected(self, dispatcher, registry):
        registry.register(hosted_descriptor("brave_web_search", parameters=SEARCH_SCHEMA))

        result = await dispatcher.execute(
            ToolCallRequest(
                tool_name="brave_web_search", arguments={"query": "cats", "count": "many"}
            )
        )

        assert result.outcome.error == ToolErrorKind.INVALID_ARGUMENTS

    @pytest.mark.asyncio
    async def test_lenient_validation_calls_anyway(
        self, registry, hosted_adapter, local_adapter
    ):
        dispatcher = Dispatcher(
            registry,
            {"hosted": hosted_adapter, "local": local_adapter},
            strict_validation=False,
        )
        registry.register(hosted_descriptor("brave_web_search", parameters=SEARCH_SCHEMA))

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"count": 3})
        )

        assert result.success
        assert hosted_adapter.calls == [("brave_web_search", {"count": 3})]

    @pytest.mark.asyncio
    async def test_schema_defaults_applied(self, dispatcher, registry, hosted_adapter):
        registry.register(hosted_descriptor("brave_web_search", parameters=SEARCH_SCHEMA))

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        assert result.success
        assert hosted_adapter.calls == [("brave_web_search", {"count": 10, "query": "cats"})]
        # the result echoes the arguments as requested
        assert result.arguments == {"query": "cats"}

    @pytest.mark.asyncio
    async def test_alias_reaches_same_tool(self, dispatcher, registry, hosted_adapter):
        registry.register(hosted_descriptor("brave_web_search", parameters=SEARCH_SCHEMA))

        first = await dispatcher.execute(
            ToolCallRequest(tool_name="brave-web-search", arguments={"query": "cats"})
        )
        second = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        assert first.outcome == second.outcome
        assert first.tool_name == "brave-web-search"


class TestRouting:
    """Tests for adapter selection, fallback and timeouts."""

    @pytest.mark.asyncio
    async def test_hosted_success_reports_source(self, dispatcher, registry, hosted_adapter):
        registry.register(search_with_fallback())
        hosted_adapter.responses["brave_web_search"] = {"results": ["hosted"]}

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        assert result.outcome == Success(payload={"results": ["hosted"]})
        assert result.source == ToolSource.HOSTED_PRIMARY
        assert result.adapter == "hosted"
        assert result.to_envelope() == {"success": True, "data": {"results": ["hosted"]}}

    @pytest.mark.asyncio
    async def test_hosted_failure_falls_back_to_local(
        self, dispatcher, registry, hosted_adapter
    ):
        registry.register(search_with_fallback())
        hosted_adapter.failures["brave_web_search"] = AdapterCallError("connection reset")

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        assert result.success
        assert result.source == ToolSource.LOCAL
        assert result.outcome.payload == {"results": [{"title": "Local result for cats"}]}
        assert hosted_adapter.state is ConnectionState.DISCONNECTED
        assert hosted_adapter.is_available() is False

    @pytest.mark.asyncio
    async def test_fallback_disabled_reports_hosted_error(
        self, dispatcher, registry, hosted_adapter, local_adapter
    ):
        registry.register(search_with_fallback(fallback=False))
        hosted_adapter.failures["brave_web_search"] = AdapterCallError("connection reset")

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        assert result.outcome.error == ToolErrorKind.ADAPTER_CALL_FAILED
        assert result.outcome.message == "connection reset"
        assert result.source == ToolSource.HOSTED_PRIMARY
        assert hosted_adapter.is_available() is False

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failure(
        self, dispatcher, registry, hosted_adapter
    ):
        registry.register(hosted_descriptor("lookup"))
        hosted_adapter.failures["lookup"] = RuntimeError("boom")

        result = await dispatcher.execute(ToolCallRequest(tool_name="lookup"))

        assert result.outcome.error == ToolErrorKind.ADAPTER_CALL_FAILED
        assert result.outcome.message == "boom"

    @pytest.mark.asyncio
    async def test_timeout_is_a_call_failure(self, registry, local_adapter):
        slow = FakeToolAdapter("hosted")
        slow.delays["lookup"] = 1.0
        dispatcher = Dispatcher(
            registry, {"hosted": slow, "local": local_adapter}, call_timeout=0.05
        )
        registry.register(hosted_descriptor("lookup"))

        result = await dispatcher.execute(ToolCallRequest(tool_name="lookup"))

        assert result.outcome.error == ToolErrorKind.ADAPTER_CALL_FAILED
        assert "timed out" in result.outcome.message
        assert result.elapsed_ms >= 40
        assert slow.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self, registry, local_adapter):
        slow = FakeToolAdapter("hosted")
        slow.delays["brave_web_search"] = 1.0
        dispatcher = Dispatcher(
            registry, {"hosted": slow, "local": local_adapter}, call_timeout=0.05
        )
        registry.register(search_with_fallback())

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "dogs"})
        )

        assert result.success
        assert result.source == ToolSource.LOCAL

    @pytest.mark.asyncio
    async def test_disconnected_hosted_adapter_is_reprobed(self, registry, local_adapter):
        hosted = FakeToolAdapter("hosted", connected=False, probe_result=True)
        dispatcher = Dispatcher(registry, {"hosted": hosted, "local": local_adapter})
        registry.register(search_with_fallback())

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        hosted.probe_mock.assert_awaited_once()
        assert result.source == ToolSource.HOSTED_PRIMARY
        assert hosted.is_available() is True

    @pytest.mark.asyncio
    async def test_failed_reprobe_skips_to_local(self, registry, local_adapter):
        hosted = FakeToolAdapter("hosted", connected=False)
        dispatcher = Dispatcher(registry, {"hosted": hosted, "local": local_adapter})
        registry.register(search_with_fallback())

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        hosted.probe_mock.assert_awaited_once()
        assert hosted.calls == []
        assert result.source == ToolSource.LOCAL

    @pytest.mark.asyncio
    async def test_unavailable_route_skipped_even_without_fallback(
        self, registry, local_adapter
    ):
        """fallback=False only stops after a failed call; an unreachable route is skipped."""
        hosted = FakeToolAdapter("hosted", connected=False)
        dispatcher = Dispatcher(registry, {"hosted": hosted, "local": local_adapter})
        registry.register(search_with_fallback(fallback=False))

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        assert result.success
        assert result.source == ToolSource.LOCAL
        assert hosted.calls == []

    @pytest.mark.asyncio
    async def test_reconnect_hook_awaited_when_adapter_comes_back(
        self, registry, local_adapter
    ):
        hosted = FakeToolAdapter("hosted", connected=False, probe_result=True)
        on_reconnect = AsyncMock()
        dispatcher = Dispatcher(
            registry, {"hosted": hosted, "local": local_adapter}, on_reconnect=on_reconnect
        )
        registry.register(search_with_fallback())

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        on_reconnect.assert_awaited_once_with(hosted)
        assert result.source == ToolSource.HOSTED_PRIMARY

    @pytest.mark.asyncio
    async def test_failing_reconnect_hook_does_not_fail_the_call(
        self, registry, local_adapter
    ):
        hosted = FakeToolAdapter("hosted", connected=False, probe_result=True)
        dispatcher = Dispatcher(
            registry,
            {"hosted": hosted, "local": local_adapter},
            on_reconnect=AsyncMock(side_effect=RuntimeError("refresh broke")),
        )
        registry.register(search_with_fallback())

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        assert result.success
        assert result.source == ToolSource.HOSTED_PRIMARY

    @pytest.mark.asyncio
    async def test_no_available_adapter(self, registry, local_adapter, monkeypatch):
        monkeypatch.delenv("TEST_GATEWAY_SECRET", raising=False)
        local_adapter.register_handler(
            "secret_tool", lambda arguments: "never", requires_env=["TEST_GATEWAY_SECRET"]
        )
        tool = local_adapter.get("secret_tool")
        registry.register(local_adapter.descriptor_for(tool))
        dispatcher = Dispatcher(registry, {"local": local_adapter})

        result = await dispatcher.execute(ToolCallRequest(tool_name="secret_tool"))

        assert result.outcome.error == ToolErrorKind.ADAPTER_UNAVAILABLE
        assert result.elapsed_ms == 0
        assert result.source is None

    @pytest.mark.asyncio
    async def test_route_to_unregistered_adapter_is_skipped(self, registry, local_adapter):
        dispatcher = Dispatcher(registry, {"local": local_adapter})
        registry.register(search_with_fallback())

        result = await dispatcher.execute(
            ToolCallRequest(tool_name="brave_web_search", arguments={"query": "cats"})
        )

        assert result.source == ToolSource.LOCAL


class TestConcurrentExecution:
    """Tests for executing all calls of a turn together."""

    @pytest.mark.asyncio
    async def test_results_returned_in_request_order(self, dispatcher, registry, hosted_adapter):
        registry.register_many([hosted_descriptor("slow"), hosted_descriptor("fast")])
        hosted_adapter.delays["slow"] = 0.2
        requests = [
            ToolCallRequest(id="a", tool_name="slow"),
            ToolCallRequest(id="b", tool_name="fast"),
        ]

        results = await dispatcher.execute_many(requests)

        assert [r.id for r in results] == ["a", "b"]
        assert [r.tool_name for r in results] == ["slow", "fast"]
        assert results[0].elapsed_ms >= results[1].elapsed_ms

    @pytest.mark.asyncio
    async def test_every_request_gets_a_result(self, dispatcher, registry, hosted_adapter):
        registry.register_many([hosted_descriptor("ok"), hosted_descriptor("broken")])
        hosted_adapter.failures["broken"] = AdapterCallError("down")
        requests = [
            ToolCallRequest(id="1", tool_name="ok"),
            ToolCallRequest(id="2", tool_name="broken"),
            ToolCallRequest(id="3", tool_name="missing"),
        ]

        results = await dispatcher.execute_many(requests)

        assert [r.id for r in results] == ["1", "2", "3"]
        assert [r.success for r in results] == [True, False, False]
        assert results[2].outcome.error == ToolErrorKind.UNKNOWN_TOOL

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self, dispatcher, registry, hosted_adapter):
        registry.register_many([hosted_descriptor(f"t{i}") for i in range(5)])
        for i in range(5):
            hosted_adapter.delays[f"t{i}"] = 0.2

        loop = asyncio.get_running_loop()
        started = loop.time()
        await dispatcher.execute_many([ToolCallRequest(tool_name=f"t{i}") for i in range(5)])

        assert loop.time() - started < 0.9
