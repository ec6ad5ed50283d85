"""Pytest fixtures for all test modules."""
import asyncio
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest

from adapters.base import BaseToolAdapter, ConnectionState
from adapters.local import LocalToolAdapter
from gateway.dispatcher import Dispatcher
from gateway.registry import ToolRegistry
from models.schema import RawTurn, ToolDescriptor, ToolRoute, ToolSource


class FakeToolAdapter(BaseToolAdapter):
    """Scriptable adapter for testing dispatch and fallback."""

    def __init__(
        self,
        name: str,
        source: ToolSource = ToolSource.HOSTED_PRIMARY,
        connected: bool = True,
        probe_result: Optional[bool] = None,
    ):
        """
        Initialize fake adapter.

        Args:
            name: Adapter name
            source: Source tag of its routes
            connected: Initial connection state
            probe_result: What initialize() reports (defaults to `connected`)
        """
        super().__init__(name=name, source=source)
        if connected:
            self.state = ConnectionState.CONNECTED
        self.probe_result = connected if probe_result is None else probe_result
        self.responses: dict[str, Any] = {}
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.calls: list[tuple[str, dict]] = []
        self.probe_mock = AsyncMock()
        self.tools: list[ToolDescriptor] = []

    def add_tool(self, name: str, parameters: Optional[dict] = None, **kwargs) -> ToolDescriptor:
        descriptor = ToolDescriptor(
            name=name,
            parameters=parameters or {"type": "object", "properties": {}},
            source=self.source,
            routes=(ToolRoute(adapter=self.name, source=self.source, remote_name=name),),
            **kwargs,
        )
        self.tools.append(descriptor)
        return descriptor

    async def initialize(self) -> bool:
        await self.probe_mock()
        self.state = (
            ConnectionState.CONNECTED if self.probe_result else ConnectionState.DISCONNECTED
        )
        return self.probe_result

    async def list_tools(self) -> list[ToolDescriptor]:
        return list(self.tools)

    async def call_tool(self, name: str, arguments: dict) -> Any:
        self.calls.append((name, arguments))
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.failures:
            raise self.failures[name]
        return self.responses.get(name, {"tool": name, "arguments": arguments})

    def is_available(self, tool_name: Optional[str] = None) -> bool:
        if self.is_hosted:
            return self.state is ConnectionState.CONNECTED
        return True


class FakeBackend:
    """Chat backend returning queued turns and recording what it was sent."""

    def __init__(self, *turns: RawTurn):
        self.turns = list(turns)
        self.requests: list[tuple[list, list]] = []
        self.error: Optional[Exception] = None

    async def chat(self, messages, tools=()):
        self.requests.append((list(messages), list(tools)))
        if self.error is not None:
            raise self.error
        if not self.turns:
            return RawTurn(content="Nothing more to say.")
        return self.turns.pop(0)


def hosted_descriptor(name: str, adapter: str = "hosted", **kwargs) -> ToolDescriptor:
    return ToolDescriptor(
        name=name,
        source=ToolSource.HOSTED_PRIMARY,
        routes=(
            ToolRoute(adapter=adapter, source=ToolSource.HOSTED_PRIMARY, remote_name=name),
        ),
        **kwargs,
    )


def local_descriptor(name: str, adapter: str = "local", **kwargs) -> ToolDescriptor:
    return ToolDescriptor(
        name=name,
        source=ToolSource.LOCAL,
        routes=(ToolRoute(adapter=adapter, source=ToolSource.LOCAL, remote_name=name),),
        **kwargs,
    )


@pytest.fixture
def hosted_adapter():
    """A connected hosted-primary fake adapter named 'hosted'."""
    return FakeToolAdapter("hosted")


@pytest.fixture
def local_adapter():
    """A real local adapter with an echo handler and an async search handler."""
    adapter = LocalToolAdapter()

    def echo(arguments: dict) -> dict:
        return {"echo": arguments}

    async def search(arguments: dict) -> dict:
        return {"results": [{"title": f"Local result for {arguments['query']}"}]}

    adapter.register_handler(
        "echo",
        echo,
        description="Echo the arguments back",
        parameters={"type": "object", "properties": {"text": {"type": "string"}}},
    )
    adapter.register_handler(
        "local_search",
        search,
        description="Search without a hosted backend",
        parameters={
            "type": "object",
            "properties": {"query": {"type": "string"}},
            "required": ["query"],
        },
    )
    return adapter


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest.fixture
def dispatcher(registry, hosted_adapter, local_adapter):
    """Dispatcher over the fake hosted adapter and the local adapter."""
    return Dispatcher(
        registry,
        {"hosted": hosted_adapter, "local": local_adapter},
        call_timeout=1.0,
        probe_timeout=0.5,
    )


@pytest.fixture
def sample_config():
    """
    Sample configuration for testing.

    Returns:
        dict: Sample configuration dict
    """
    return {
        "version": "1.0",
        "backend": {
            "type": "openai",
            "base_url": "https://openrouter.ai/api/v1",
            "model": "openai/gpt-4o-mini",
            "api_key": "${TEST_OPENROUTER_KEY}",
        },
        "dispatch": {"call_timeout": 5, "probe_timeout": 2},
        "hosted_backends": {
            "search": {
                "url": "https://server.example.com/search/mcp",
                "api_key": "${TEST_SMITHERY_KEY}",
                "profile": "${TEST_SMITHERY_PROFILE}",
                "priority": "primary",
            },
            "ordinals": {
                "url": "https://server.example.com/ordinals/mcp",
                "api_key": "${TEST_SMITHERY_KEY}",
                "profile": "${TEST_SMITHERY_PROFILE}",
                "priority": "secondary",
                "inject_arguments": {"apiKey": "${TEST_ORDISCAN_KEY}"},
            },
        },
        "local_tools": {
            "brave-search": {
                "description": "Local web search",
                "handler": "tests.handlers:search",
                "requires_env": ["TEST_BRAVE_KEY"],
                "fallback_for": "search",
                "fallback_tool": "brave_web_search",
                "parameters": {
                    "type": "object",
                    "properties": {"query": {"type": "string"}},
                    "required": ["query"],
                },
            },
        },
    }
