"""In-process tool adapter invoking injected handler functions."""
import asyncio
import importlib
import inspect
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from adapters.base import BaseToolAdapter, ConnectionState
from models.errors import AdapterUnavailableError
from models.schema import ToolDescriptor, ToolRoute, ToolSource

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Union[Any, Awaitable[Any]]]


def load_handler(path: str) -> Handler:
    """
    Import a handler from a 'package.module:function' path.

    Raises:
        ImportError: If the module cannot be imported
        AttributeError: If the module has no such attribute
        TypeError: If the attribute is not callable
    """
    module_name, _, attr = path.partition(":")
    module = importlib.import_module(module_name)
    handler = getattr(module, attr)
    if not callable(handler):
        raise TypeError(f"Handler '{path}' is not callable")
    return handler


@dataclass
class LocalTool:
    """A local tool: its public shape plus the handler behind it."""

    name: str
    handler: Handler
    description: str = ""
    parameters: dict = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    requires_env: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    fallback_for: Optional[str] = None
    fallback_tool: Optional[str] = None

    def missing_credentials(self) -> list[str]:
        return [var for var in self.requires_env if not os.getenv(var)]


class LocalToolAdapter(BaseToolAdapter):
    """
    Adapter for tools implemented in-process.

    Handlers are injected by the tool business-logic layer; this adapter only
    awaits them. Synchronous handlers run in a worker thread so they never
    block the event loop.
    """

    def __init__(self, name: str = "local"):
        super().__init__(name=name, source=ToolSource.LOCAL)
        self._tools: dict[str, LocalTool] = {}

    def register_handler(
        self,
        name: str,
        handler: Handler,
        description: str = "",
        parameters: Optional[dict] = None,
        requires_env: Optional[list[str]] = None,
        aliases: Optional[list[str]] = None,
        fallback_for: Optional[str] = None,
        fallback_tool: Optional[str] = None,
    ) -> LocalTool:
        """
        Register (or replace) a local tool.

        Args:
            name: Tool name
            handler: Callable taking the arguments dict; may be async
            description: Human-readable purpose
            parameters: JSON schema of accepted arguments
            requires_env: Environment credentials the handler needs
            aliases: Alternate spellings for the tool
            fallback_for: Hosted backend this tool stands in for
            fallback_tool: Name of the hosted tool it replaces on that backend

        Returns:
            The registered LocalTool
        """
        tool = LocalTool(
            name=name,
            handler=handler,
            description=description,
            parameters=parameters or {"type": "object", "properties": {}},
            requires_env=list(requires_env or []),
            aliases=list(aliases or []),
            fallback_for=fallback_for,
            fallback_tool=fallback_tool,
        )
        self._tools[name] = tool
        logger.info(f"Registered local tool: {name}")
        return tool

    def get(self, name: str) -> Optional[LocalTool]:
        return self._tools.get(name)

    def descriptor_for(self, tool: LocalTool) -> ToolDescriptor:
        """Build the descriptor that routes a local tool through this adapter."""

        return ToolDescriptor(
            name=tool.name,
            description=tool.description,
            parameters=tool.parameters,
            source=ToolSource.LOCAL,
            routes=(
                ToolRoute(adapter=self.name, source=self.source, remote_name=tool.name),
            ),
            aliases=tuple(tool.aliases),
            fallback_for=tool.fallback_for,
            fallback_tool=tool.fallback_tool,
        )

    async def initialize(self) -> bool:
        self.state = ConnectionState.CONNECTED
        return True

    async def list_tools(self) -> list[ToolDescriptor]:
        return [self.descriptor_for(tool) for tool in self._tools.values()]

    def is_available(self, tool_name: Optional[str] = None) -> bool:
        if tool_name is None:
            return bool(self._tools)
        tool = self._tools.get(tool_name)
        return tool is not None and not tool.missing_credentials()

    async def call_tool(self, name: str, arguments: dict) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise AdapterUnavailableError(f"No local handler registered for '{name}'")

        missing = tool.missing_credentials()
        if missing:
            raise AdapterUnavailableError(
                f"Local tool '{name}' is missing credentials: {', '.join(missing)}"
            )

        logger.debug(f"Invoking local handler: tool={name}")
        if inspect.iscoroutinefunction(tool.handler):
            return await tool.handler(arguments)

        result = await asyncio.to_thread(tool.handler, arguments)
        if inspect.isawaitable(result):
            return await result
        return result
