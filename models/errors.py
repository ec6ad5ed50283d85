"""Error taxonomy for tool dispatch and upstream AI calls."""
from enum import Enum
from typing import Optional


class ToolErrorKind(str, Enum):
    """Kinds of failure a tool call or a turn can end in."""

    UNKNOWN_TOOL = "UnknownTool"
    INVALID_ARGUMENTS = "InvalidArguments"
    ADAPTER_UNAVAILABLE = "AdapterUnavailable"
    ADAPTER_CALL_FAILED = "AdapterCallFailed"
    PARSE_FAILURE = "ParseFailure"
    UPSTREAM_AI_ERROR = "UpstreamAIError"


class GatewayError(Exception):
    """Base class for errors raised inside the gateway."""

    kind: ToolErrorKind = ToolErrorKind.ADAPTER_CALL_FAILED


class AdapterUnavailableError(GatewayError):
    """Adapter has no credentials or no live connection."""

    kind = ToolErrorKind.ADAPTER_UNAVAILABLE


class AdapterCallError(GatewayError):
    """Remote tool call failed, timed out, or reported an error result."""

    kind = ToolErrorKind.ADAPTER_CALL_FAILED

    def __init__(self, message: str, adapter: Optional[str] = None):
        super().__init__(message)
        self.adapter = adapter


class UpstreamAIError(GatewayError):
    """The AI backend call itself failed. Aborts the whole turn."""

    kind = ToolErrorKind.UPSTREAM_AI_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
