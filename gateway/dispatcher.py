"""Tool call dispatch: resolve, validate, route, time, and envelope."""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Mapping, Optional

from adapters.base import BaseToolAdapter
from gateway.registry import ToolRegistry
from gateway.validation import ArgumentValidationError, validate_arguments
from models.errors import GatewayError, ToolErrorKind
from models.schema import (
    Success,
    ToolCallRequest,
    ToolCallResult,
    ToolDescriptor,
    ToolRoute,
)

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Executes tool call requests against the adapters that can serve them.

    Tool-level failures never escape execute(): they come back as a
    ToolCallResult with a Failure outcome, so sibling calls in the same turn
    are unaffected and every request yields exactly one result.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        adapters: Mapping[str, BaseToolAdapter],
        call_timeout: float = 30.0,
        probe_timeout: float = 10.0,
        strict_validation: bool = True,
        on_reconnect: Optional[Callable[[BaseToolAdapter], Awaitable[None]]] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            registry: Tool registry used for name resolution
            adapters: Adapter instances by name (local and hosted)
            call_timeout: Seconds allowed per adapter call
            probe_timeout: Seconds allowed per re-probe of a hosted adapter
            strict_validation: Reject schema violations (False only logs them)
            on_reconnect: Awaited after a re-probe brings a hosted adapter back
        """
        self.registry = registry
        self.adapters = adapters
        self.call_timeout = call_timeout
        self.probe_timeout = probe_timeout
        self.strict_validation = strict_validation
        self.on_reconnect = on_reconnect

    async def execute(self, request: ToolCallRequest) -> ToolCallResult:
        """
        Execute one tool call request.

        Args:
            request: The call to perform

        Returns:
            ToolCallResult with the same id as the request
        """
        descriptor = self.registry.resolve(request.tool_name)
        if descriptor is None:
            logger.warning(f"Unknown tool requested: {request.tool_name}")
            return ToolCallResult.failed(
                request, ToolErrorKind.UNKNOWN_TOOL, f"Unknown tool: {request.tool_name}"
            )

        try:
            arguments = validate_arguments(descriptor.parameters, request.arguments)
        except ArgumentValidationError as e:
            if self.strict_validation:
                logger.warning(f"Invalid arguments for {descriptor.name}: {e}")
                return ToolCallResult.failed(
                    request,
                    ToolErrorKind.INVALID_ARGUMENTS,
                    f"Invalid arguments for {descriptor.name}: {e}",
                )
            logger.info(f"Arguments for {descriptor.name} violate schema, calling anyway: {e}")
            arguments = dict(request.arguments)

        return await self._run_routes(request, descriptor, arguments)

    async def execute_many(self, requests: list[ToolCallRequest]) -> list[ToolCallResult]:
        """
        Execute independent requests concurrently.

        Results are re-keyed by request id and returned in request order,
        whatever order the calls settled in.
        """
        settled = await asyncio.gather(*(self.execute(request) for request in requests))
        by_id = {result.id: result for result in settled}
        return [by_id[request.id] for request in requests]

    async def _run_routes(
        self, request: ToolCallRequest, descriptor: ToolDescriptor, arguments: dict
    ) -> ToolCallResult:
        """Walk the descriptor's fallback chain until one route succeeds."""

        last_kind = ToolErrorKind.ADAPTER_UNAVAILABLE
        last_message = f"No available adapter for tool {descriptor.name}"
        started: Optional[float] = None
        served_by: Optional[ToolRoute] = None

        for route in descriptor.ordered_routes():
            adapter = self.adapters.get(route.adapter)
            if adapter is None:
                logger.warning(f"Tool {descriptor.name} routes to unknown adapter '{route.adapter}'")
                continue

            if not await self._ensure_available(adapter, route):
                if started is None:
                    last_message = (
                        f"Adapter '{adapter.name}' is unavailable for tool {descriptor.name}"
                    )
                continue

            if started is None:
                started = time.perf_counter()
            served_by = route

            try:
                payload = await asyncio.wait_for(
                    adapter.call_tool(route.remote_name, arguments),
                    timeout=self.call_timeout,
                )
            except asyncio.TimeoutError:
                adapter.mark_disconnected(f"timed out after {self.call_timeout}s")
                last_kind = ToolErrorKind.ADAPTER_CALL_FAILED
                last_message = (
                    f"Tool {descriptor.name} timed out after {self.call_timeout}s "
                    f"on '{adapter.name}'"
                )
                logger.error(last_message)
            except Exception as e:
                adapter.mark_disconnected(str(e))
                last_kind = (
                    e.kind if isinstance(e, GatewayError) else ToolErrorKind.ADAPTER_CALL_FAILED
                )
                last_message = str(e) or f"{type(e).__name__} in tool {descriptor.name}"
                logger.error(
                    f"Tool {descriptor.name} failed on '{adapter.name}': "
                    f"{type(e).__name__}: {e}"
                )
            else:
                elapsed = self._elapsed_ms(started)
                logger.info(
                    f"Tool {descriptor.name} served by '{adapter.name}' "
                    f"({route.source.value}) in {elapsed}ms"
                )
                return ToolCallResult(
                    id=request.id,
                    tool_name=request.tool_name,
                    arguments=request.arguments,
                    outcome=Success(payload=payload),
                    elapsed_ms=elapsed,
                    source=route.source,
                    adapter=adapter.name,
                )

            if not descriptor.fallback:
                break
            logger.info(f"Falling back to next route for tool {descriptor.name}")

        return ToolCallResult.failed(
            request,
            last_kind,
            last_message,
            elapsed_ms=self._elapsed_ms(started) if started is not None else 0,
            source=served_by.source if served_by else None,
            adapter=served_by.adapter if served_by else None,
        )

    async def _ensure_available(self, adapter: BaseToolAdapter, route: ToolRoute) -> bool:
        """Check an adapter, giving a hosted adapter one re-probe first."""

        if adapter.is_available(route.remote_name):
            return True
        if not adapter.is_hosted:
            return False

        logger.info(f"Re-probing hosted adapter '{adapter.name}'")
        try:
            await asyncio.wait_for(adapter.initialize(), timeout=self.probe_timeout)
        except Exception as e:
            # includes the probe timing out
            adapter.mark_disconnected(f"re-probe failed: {type(e).__name__}: {e}")
            return False

        if not adapter.is_available(route.remote_name):
            return False
        if self.on_reconnect is not None:
            try:
                await self.on_reconnect(adapter)
            except Exception as e:
                logger.error(
                    f"Refresh after reconnecting '{adapter.name}' failed: {e}", exc_info=True
                )
        return True

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return max(0, int((time.perf_counter() - started) * 1000))
