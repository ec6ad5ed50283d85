"""Message normalization: raw AI turn plus tool results -> ordered messages."""
import json
import logging
import re
from typing import Any, Iterable

from models.errors import ToolErrorKind
from models.schema import (
    Message,
    RawTurn,
    Success,
    ToolCallRequest,
    ToolCallResult,
)

logger = logging.getLogger(__name__)

TOOL_MARKER = re.compile(r"<tool>(.*?)</tool>", re.DOTALL)
CALL_SYNTAX = re.compile(r"^\s*([A-Za-z0-9_\-]+)\s*\((.*)\)\s*$", re.DOTALL)


def serialize_payload(payload: Any) -> str:
    """Render a tool payload as display text: strings verbatim, the rest as indented JSON."""

    if isinstance(payload, str):
        return payload
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)


def result_content(result: ToolCallResult) -> str:
    """Content of the tool message carrying a result."""

    if isinstance(result.outcome, Success):
        return serialize_payload(result.outcome.payload)
    return json.dumps({"error": result.outcome.message}, indent=2, ensure_ascii=False)


def normalize(
    raw_turn: RawTurn, results: Iterable[ToolCallResult], now_ms: int
) -> list[Message]:
    """
    Convert an AI turn and its collected tool results into canonical messages.

    Pure function: the same inputs always produce the same output.

    Args:
        raw_turn: The AI backend's reply
        results: Tool results in any order (matched to requests by id)
        now_ms: Timestamp for the assistant message, epoch milliseconds

    Returns:
        [assistant] when the turn has no tool calls; otherwise
        [assistant with tool_calls, tool_1, ..., tool_N] in request order,
        each tool message strictly later than the one before it
    """
    if not raw_turn.tool_calls:
        return [Message(role="assistant", content=raw_turn.content, created_at=now_ms)]

    by_id = {result.id: result for result in results}

    messages = [
        Message(
            role="assistant",
            content=raw_turn.content,
            created_at=now_ms,
            tool_calls=list(raw_turn.tool_calls),
        )
    ]

    for position, request in enumerate(raw_turn.tool_calls, start=1):
        result = by_id.get(request.id)
        if result is None:
            logger.error(f"No result collected for tool call {request.id} ({request.tool_name})")
            result = ToolCallResult.failed(
                request,
                ToolErrorKind.ADAPTER_CALL_FAILED,
                f"No result was recorded for tool {request.tool_name}",
            )

        messages.append(
            Message(
                role="tool",
                content=result_content(result),
                created_at=now_ms + position,
                tool_call_id=request.id,
                tool_name=request.tool_name,
            )
        )

    return messages


def parse_inline_tool_calls(content: str) -> tuple[str, list[ToolCallRequest]]:
    """
    Extract tool calls written inline as markers by text-only backends.

    Looks for format: <tool>name({"arg": "value"})</tool>

    Args:
        content: The backend's reply text

    Returns:
        (content with markers removed, list of ToolCallRequest). Malformed
        markers are skipped and left out of both.
    """
    requests: list[ToolCallRequest] = []

    for match in TOOL_MARKER.finditer(content):
        call = CALL_SYNTAX.match(match.group(1))
        if not call:
            logger.debug(f"Skipping malformed tool marker: {match.group(0)[:100]}")
            continue

        name, raw_arguments = call.group(1), call.group(2).strip()
        try:
            arguments = json.loads(raw_arguments) if raw_arguments else {}
        except json.JSONDecodeError as e:
            logger.debug(f"Failed to parse arguments of inline tool call {name}: {e}")
            continue
        if not isinstance(arguments, dict):
            logger.debug(f"Inline tool call {name} has non-object arguments, skipping")
            continue

        requests.append(ToolCallRequest(tool_name=name, arguments=arguments))

    if not requests:
        return content, []

    stripped = TOOL_MARKER.sub("", content).strip()
    return stripped, requests
