"""Base tool adapter with connection state tracking."""
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional

from models.schema import ToolDescriptor, ToolSource

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Connectivity of an adapter's backend."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class BaseToolAdapter(ABC):
    """
    Abstract base class for tool transport adapters.

    Every adapter exposes the same call contract: probe connectivity with
    initialize(), enumerate tools with list_tools(), run one tool with
    call_tool(), and report health with is_available(). Subclasses implement
    the transport-specific parts.
    """

    def __init__(self, name: str, source: ToolSource):
        """
        Initialize adapter.

        Args:
            name: Adapter name (unique across the gateway)
            source: Source tag attached to every route this adapter serves
        """
        self.name = name
        self.source = source
        self.state = ConnectionState.DISCONNECTED

    @property
    def is_hosted(self) -> bool:
        return self.source.is_hosted

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @abstractmethod
    async def initialize(self) -> bool:
        """
        Probe connectivity and update the connection state.

        Returns:
            True if the adapter can serve calls
        """
        pass

    @abstractmethod
    async def list_tools(self) -> list[ToolDescriptor]:
        """
        List the tools this adapter serves, in the order it reports them.

        Returns:
            Tool descriptors routed through this adapter
        """
        pass

    @abstractmethod
    async def call_tool(self, name: str, arguments: dict) -> Any:
        """
        Invoke one tool.

        Args:
            name: Tool name as this adapter knows it
            arguments: Validated tool arguments

        Returns:
            Structured payload (dict, list, scalar) or an opaque text wrapper

        Raises:
            AdapterUnavailableError: If the adapter cannot serve the call
            AdapterCallError: If the call itself failed
        """
        pass

    @abstractmethod
    def is_available(self, tool_name: Optional[str] = None) -> bool:
        """
        Report whether the adapter can currently serve calls.

        Args:
            tool_name: Optional tool to check (adapters with per-tool
                credentials use it)
        """
        pass

    def mark_disconnected(self, reason: str = "") -> None:
        """Force re-negotiation on next use."""

        if self.state is not ConnectionState.DISCONNECTED:
            logger.warning(
                f"Adapter '{self.name}' marked disconnected"
                + (f": {reason}" if reason else "")
            )
        self.state = ConnectionState.DISCONNECTED

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, state={self.state.value})"
