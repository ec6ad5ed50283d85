"""Hosted MCP tool adapter with one fresh session per call.

Sessions are never reused: each probe, listing and call opens its own
transport, initializes an MCP client session, does one operation, and closes
everything on the way out of the ``async with`` block, success or not. This
trades per-call setup latency for freedom from stale sessions.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx
from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client

from adapters.base import BaseToolAdapter, ConnectionState
from adapters.decoders import decode_call_result, result_error_text
from models.errors import AdapterCallError, AdapterUnavailableError
from models.schema import ToolDescriptor, ToolRoute, ToolSource

logger = logging.getLogger(__name__)


def mask(secret: Optional[str]) -> str:
    """Show only a short prefix of a credential."""

    if not secret:
        return "<unset>"
    return f"{secret[:4]}..."


class HostedMCPAdapter(BaseToolAdapter):
    """
    Adapter for tools served by a hosted MCP server.

    Example:
        adapter = HostedMCPAdapter(
            name="smithery",
            url="https://server.smithery.ai/@smithery-ai/brave-search/mcp",
            api_key="...",
            profile="...",
        )
        if await adapter.initialize():
            payload = await adapter.call_tool("brave_web_search", {"query": "cats"})
    """

    def __init__(
        self,
        name: str,
        url: str,
        api_key: Optional[str] = None,
        profile: Optional[str] = None,
        source: ToolSource = ToolSource.HOSTED_PRIMARY,
        transport: str = "streamable-http",
        timeout: float = 30.0,
        inject_arguments: Optional[dict[str, Any]] = None,
    ):
        """
        Initialize hosted adapter.

        Args:
            name: Backend name (e.g., 'smithery')
            url: MCP endpoint URL
            api_key: API key sent with every session
            profile: Profile sent with every session
            source: hosted-primary or hosted-secondary
            transport: 'streamable-http' or 'sse'
            timeout: Transport timeout in seconds
            inject_arguments: Arguments merged into every call
        """
        if not source.is_hosted:
            raise ValueError(f"Hosted adapter '{name}' needs a hosted source, got {source.value}")
        if transport not in ("streamable-http", "sse"):
            raise ValueError(
                f"Unsupported transport '{transport}'. Supported: streamable-http, sse"
            )

        super().__init__(name=name, source=source)
        self.url = url
        self.api_key = api_key
        self.profile = profile
        self.transport = transport
        self.timeout = timeout
        self.inject_arguments = {
            key: value
            for key, value in (inject_arguments or {}).items()
            if value is not None
        }

    @property
    def has_credentials(self) -> bool:
        return bool(self.url and self.api_key and self.profile)

    def session_url(self) -> str:
        """Endpoint URL with the key/profile pair as query parameters."""

        url = httpx.URL(self.url)
        params = {}
        if self.api_key:
            params["api_key"] = self.api_key
        if self.profile:
            params["profile"] = self.profile
        return str(url.copy_merge_params(params))

    @asynccontextmanager
    async def open_session(self) -> AsyncIterator[ClientSession]:
        """Open a fresh, initialized MCP session; closed when the block exits."""

        url = self.session_url()
        if self.transport == "sse":
            transport = sse_client(url, timeout=self.timeout)
        else:
            transport = streamablehttp_client(url)

        async with transport as streams:
            read_stream, write_stream = streams[0], streams[1]
            async with ClientSession(read_stream, write_stream) as session:
                await session.initialize()
                yield session

    async def initialize(self) -> bool:
        """One-shot connectivity probe. Retains no session."""

        if not self.has_credentials:
            logger.warning(
                f"Hosted backend '{self.name}' has no credentials configured "
                f"(api_key={mask(self.api_key)}, profile={'set' if self.profile else '<unset>'}), "
                "skipping"
            )
            self.state = ConnectionState.DISCONNECTED
            return False

        self.state = ConnectionState.CONNECTING
        try:
            async with self.open_session() as session:
                await session.list_tools()
        except Exception as e:
            logger.error(f"Failed to connect to hosted backend '{self.name}': {e}")
            self.state = ConnectionState.DISCONNECTED
            return False

        self.state = ConnectionState.CONNECTED
        logger.info(f"Connected to hosted backend '{self.name}' ({self.source.value})")
        return True

    async def list_tools(self) -> list[ToolDescriptor]:
        if not self.is_available():
            raise AdapterUnavailableError(f"Hosted backend '{self.name}' is not available")

        try:
            async with self.open_session() as session:
                result = await session.list_tools()
        except Exception as e:
            self.mark_disconnected(str(e))
            raise AdapterCallError(
                f"Failed to list tools on '{self.name}': {e}", adapter=self.name
            ) from e

        descriptors = [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                parameters=tool.inputSchema or {"type": "object", "properties": {}},
                source=self.source,
                routes=(
                    ToolRoute(adapter=self.name, source=self.source, remote_name=tool.name),
                ),
            )
            for tool in result.tools
        ]
        logger.info(f"Hosted backend '{self.name}' reported {len(descriptors)} tools")
        return descriptors

    async def call_tool(self, name: str, arguments: dict) -> Any:
        if not self.is_available():
            raise AdapterUnavailableError(f"Hosted backend '{self.name}' is not available")

        call_arguments = {**arguments, **self.inject_arguments}
        logger.info(f"Calling hosted tool: backend={self.name}, tool={name}")

        try:
            async with self.open_session() as session:
                result = await session.call_tool(name, call_arguments)
        except Exception as e:
            self.mark_disconnected(str(e))
            raise AdapterCallError(
                f"Failed to call tool {name} on '{self.name}': {e}", adapter=self.name
            ) from e

        if getattr(result, "isError", False):
            self.mark_disconnected("tool returned an error result")
            raise AdapterCallError(
                f"Tool {name} on '{self.name}' returned an error: {result_error_text(result)}",
                adapter=self.name,
            )

        return decode_call_result(result, tool_name=name, arguments=arguments)

    def is_available(self, tool_name: Optional[str] = None) -> bool:
        return self.connected and self.has_credentials
