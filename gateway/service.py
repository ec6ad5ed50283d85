"""Gateway service: the chat, tool listing and tool invocation operations."""
import asyncio
import logging
import time
from typing import Any, Optional, Union

from adapters import create_hosted_adapters, create_local_adapter
from adapters.base import BaseToolAdapter
from adapters.local import LocalToolAdapter
from backends import create_backend
from backends.base_http import BaseHTTPBackend
from gateway.dispatcher import Dispatcher
from gateway.normalizer import normalize, parse_inline_tool_calls
from gateway.registry import ToolRegistry, normalize_name
from models.config import Config
from models.errors import AdapterCallError, AdapterUnavailableError, UpstreamAIError
from models.schema import (
    ChatRequest,
    Message,
    RawTurn,
    Success,
    ToolCallRequest,
    ToolDescriptor,
    ToolRoute,
    new_call_id,
)

logger = logging.getLogger(__name__)

ChatReply = Union[Message, list[Message]]


def now_ms() -> int:
    return int(time.time() * 1000)


def merge_stand_ins(
    hosted: list[ToolDescriptor], stand_ins: list[ToolDescriptor]
) -> list[ToolDescriptor]:
    """
    Give hosted tools a local route when a stand-in backs them up.

    A hosted tool whose name matches a stand-in's name or alias becomes one
    descriptor with the hosted route first and the local route after it,
    answering to the stand-in's spellings too.
    """
    merged = []
    for descriptor in hosted:
        key = normalize_name(descriptor.name)
        backup = next(
            (
                s
                for s in stand_ins
                if key in {normalize_name(n) for n in (s.name, *s.aliases)}
            ),
            None,
        )
        if backup is None:
            merged.append(descriptor)
            continue

        logger.info(f"Local tool {backup.name} backs up hosted tool {descriptor.name}")
        aliases = tuple(
            dict.fromkeys((*descriptor.aliases, backup.name, *backup.aliases))
        )
        merged.append(
            descriptor.model_copy(
                update={
                    "routes": descriptor.routes + backup.routes,
                    "aliases": tuple(a for a in aliases if a != descriptor.name),
                    "fallback": True,
                }
            )
        )
    return merged


class ToolGateway:
    """
    Wires registry, adapters, dispatcher and chat backend together.

    Every request is stateless: the conversation arrives with the request and
    nothing is kept between requests apart from tool discovery results and
    adapter connection state.
    """

    def __init__(
        self,
        local_adapter: LocalToolAdapter,
        hosted_adapters: Optional[dict[str, BaseToolAdapter]] = None,
        backend: Optional[BaseHTTPBackend] = None,
        synonyms: Optional[dict[str, str]] = None,
        call_timeout: float = 30.0,
        probe_timeout: float = 10.0,
        strict_validation: bool = True,
    ):
        self.local_adapter = local_adapter
        self.hosted_adapters = dict(hosted_adapters or {})
        self.backend = backend
        self.probe_timeout = probe_timeout

        self.adapters: dict[str, BaseToolAdapter] = {
            local_adapter.name: local_adapter,
            **self.hosted_adapters,
        }
        self.registry = ToolRegistry(
            synonyms=synonyms,
            is_connected=self._backend_connected,
            is_available=lambda d: self.local_adapter.is_available(d.name),
        )
        self.dispatcher = Dispatcher(
            self.registry,
            self.adapters,
            call_timeout=call_timeout,
            probe_timeout=probe_timeout,
            strict_validation=strict_validation,
            on_reconnect=self._on_reconnect,
        )

    @classmethod
    def from_config(cls, config: Config) -> "ToolGateway":
        """Build a gateway from validated configuration."""

        backend = create_backend(config.backend) if config.backend else None
        if backend is None:
            logger.warning("No AI backend configured; chat requests will fail")

        return cls(
            local_adapter=create_local_adapter(config),
            hosted_adapters=create_hosted_adapters(config),
            backend=backend,
            synonyms=config.tool_aliases,
            call_timeout=config.dispatch.call_timeout,
            probe_timeout=config.dispatch.probe_timeout,
            strict_validation=config.dispatch.validate_arguments,
        )

    def _backend_connected(self, backend_name: str) -> bool:
        adapter = self.hosted_adapters.get(backend_name)
        return adapter is not None and adapter.connected

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Probe every adapter and populate the registry."""

        await self.local_adapter.initialize()
        await self.discover()

    async def discover(self) -> None:
        """
        Probe hosted backends concurrently and register all known tools.

        A backend that fails its probe contributes no tools; its local
        stand-ins (if any) are listed instead, still routed to the backend
        first so the dispatcher re-probes it on use.
        """
        reported = await asyncio.gather(
            *(self._probe(adapter) for adapter in self.hosted_adapters.values())
        )
        await self._register(reported)

    async def refresh(self) -> None:
        """Re-list tools from connected hosted backends without probing them again."""

        reported = await asyncio.gather(
            *(self._list(adapter) for adapter in self.hosted_adapters.values())
        )
        await self._register(reported)

    async def _on_reconnect(self, adapter: BaseToolAdapter) -> None:
        logger.info(f"Hosted backend '{adapter.name}' is back; refreshing its tools")
        await self.refresh()

    async def _register(self, reported: list[list[ToolDescriptor]]) -> None:
        local_tools = await self.local_adapter.list_tools()
        stand_ins = [d for d in local_tools if d.fallback_for is not None]

        hosted: dict[str, ToolDescriptor] = {}
        for descriptors in reported:
            for descriptor in descriptors:
                existing = hosted.get(descriptor.name)
                if existing is None:
                    hosted[descriptor.name] = descriptor
                else:
                    # same tool on a lower-priority backend becomes a later route
                    hosted[descriptor.name] = existing.model_copy(
                        update={"routes": existing.routes + descriptor.routes}
                    )

        merged = merge_stand_ins(list(hosted.values()), stand_ins)
        adopted = {normalize_name(n) for d in merged for n in (d.name, *d.aliases)}
        local_tools = [
            self._route_to_backend(d)
            if d.fallback_for is not None and normalize_name(d.name) not in adopted
            else d
            for d in local_tools
        ]

        self.registry.register_many([*local_tools, *merged])
        self._log_summary()

    def _route_to_backend(self, stand_in: ToolDescriptor) -> ToolDescriptor:
        """Put the hosted tool a stand-in replaces ahead of its local route."""

        adapter = self.hosted_adapters.get(stand_in.fallback_for)
        if adapter is None or not stand_in.fallback_tool:
            return stand_in
        hosted_route = ToolRoute(
            adapter=adapter.name, source=adapter.source, remote_name=stand_in.fallback_tool
        )
        return stand_in.model_copy(
            update={"routes": (hosted_route, *stand_in.routes), "fallback": True}
        )

    async def _probe(self, adapter: BaseToolAdapter) -> list[ToolDescriptor]:
        try:
            connected = await asyncio.wait_for(
                adapter.initialize(), timeout=self.probe_timeout
            )
        except asyncio.TimeoutError:
            adapter.mark_disconnected(f"probe timed out after {self.probe_timeout}s")
            return []
        if not connected:
            return []
        return await self._list(adapter)

    async def _list(self, adapter: BaseToolAdapter) -> list[ToolDescriptor]:
        if not adapter.connected:
            return []
        try:
            return await adapter.list_tools()
        except (AdapterCallError, AdapterUnavailableError) as e:
            logger.error(f"Tool discovery failed on '{adapter.name}': {e}")
            return []

    def _log_summary(self) -> None:
        connected = [name for name, a in self.hosted_adapters.items() if a.connected]
        offline = [name for name, a in self.hosted_adapters.items() if not a.connected]
        logger.info(
            f"Tool gateway ready: {len(self.registry)} tools registered, "
            f"{len(self.registry.list())} listed"
        )
        if connected:
            logger.info(f"Connected integrations: {', '.join(connected)}")
        if offline:
            logger.warning(f"Offline integrations: {', '.join(offline)}")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def list_tools(self) -> list[dict[str, Any]]:
        return [descriptor.to_listing() for descriptor in self.registry.list()]

    async def invoke_tool(self, name: str, params: Optional[dict] = None) -> dict[str, Any]:
        """
        Run one tool directly, outside any conversation.

        Returns:
            {"success": bool, "result" | "error": ..., "tool": canonical name}
        """
        descriptor = self.registry.resolve(name)
        request = ToolCallRequest(tool_name=name, arguments=params or {})
        result = await self.dispatcher.execute(request)

        response: dict[str, Any] = {
            "success": result.success,
            "tool": descriptor.name if descriptor else name,
        }
        if isinstance(result.outcome, Success):
            response["result"] = result.outcome.payload
        else:
            response["error"] = result.outcome.message
        return response

    async def chat(self, request: ChatRequest) -> ChatReply:
        """
        Run one conversational turn.

        Returns:
            A single assistant message when no tools were called, otherwise
            the ordered list [assistant with tool_calls, tool results...].
            AI backend failures come back as an assistant message with
            error=True.
        """
        logger.info(
            f"Chat request: session={request.session_id or '-'}, "
            f"history={len(request.history)} messages"
        )
        if self.backend is None:
            return self.error_reply("No AI backend is configured")

        messages = [
            *request.history,
            Message(role="user", content=request.message, created_at=now_ms()),
        ]

        try:
            turn = await self.backend.chat(messages, tools=self.registry.list())
        except UpstreamAIError as e:
            logger.error(f"AI backend error: {e}")
            return self.error_reply(f"The AI backend could not answer: {e}")
        except Exception as e:
            logger.error(f"Unexpected error calling AI backend: {e}", exc_info=True)
            return self.error_reply("The AI backend could not answer this request")

        if not turn.tool_calls:
            content, inline_calls = parse_inline_tool_calls(turn.content)
            if inline_calls:
                turn = RawTurn(content=content, tool_calls=inline_calls)

        turn = self._with_unique_ids(turn)
        results = await self.dispatcher.execute_many(turn.tool_calls)
        normalized = normalize(turn, results, now_ms=now_ms())

        if not turn.tool_calls:
            return normalized[0]
        return normalized

    async def follow_up(self, messages: list[Message]) -> Message:
        """
        Send a conversation ending in tool results back to the AI backend.

        No tools are offered, so the backend answers in text. Any tool calls
        it requests anyway are ignored.

        Returns:
            The assistant's answer, or an error message (error=True)
        """
        if self.backend is None:
            return self.error_reply("No AI backend is configured")

        try:
            turn = await self.backend.chat(messages)
        except UpstreamAIError as e:
            logger.error(f"AI backend error during follow-up: {e}")
            return self.error_reply(f"The AI backend could not answer: {e}")
        except Exception as e:
            logger.error(f"Unexpected error calling AI backend: {e}", exc_info=True)
            return self.error_reply("The AI backend could not answer this request")

        if turn.tool_calls:
            logger.warning(f"Ignoring {len(turn.tool_calls)} tool calls requested in a follow-up")
        return Message(role="assistant", content=turn.content, created_at=now_ms())

    @staticmethod
    def _with_unique_ids(turn: RawTurn) -> RawTurn:
        seen: set[str] = set()
        calls = []
        for call in turn.tool_calls:
            if call.id in seen:
                call = call.model_copy(update={"id": new_call_id()})
            seen.add(call.id)
            calls.append(call)
        return RawTurn(content=turn.content, tool_calls=calls)

    @staticmethod
    def error_reply(content: str) -> Message:
        """Assistant message flagged as an error, the one failure shape chat returns."""
        return Message(role="assistant", content=content, created_at=now_ms(), error=True)
