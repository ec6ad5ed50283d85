"""Pydantic models for the tool gateway."""
import json
import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.errors import ToolErrorKind


class ToolSource(str, Enum):
    """Resolution strategy tag carried by descriptors and routes."""

    LOCAL = "local"
    HOSTED_PRIMARY = "hosted-primary"
    HOSTED_SECONDARY = "hosted-secondary"

    @property
    def rank(self) -> int:
        """Preference rank (lower is tried first)."""
        return _SOURCE_RANK[self]

    @property
    def is_hosted(self) -> bool:
        return self is not ToolSource.LOCAL


_SOURCE_RANK = {
    ToolSource.HOSTED_PRIMARY: 0,
    ToolSource.HOSTED_SECONDARY: 1,
    ToolSource.LOCAL: 2,
}


def new_call_id() -> str:
    """Generate an opaque tool call correlation id."""
    return f"call_{uuid.uuid4().hex[:16]}"


def decode_arguments(raw: Any) -> Optional[dict]:
    """
    Decode tool call arguments that may arrive as a JSON string.

    Returns None when the value cannot be turned into a mapping.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return None
        return decoded if isinstance(decoded, dict) else None
    return None


def coerce_tool_call(entry: Any) -> Any:
    """
    Accept a tool call in either wire shape and return ToolCallRequest fields.

    Supported shapes:
        {"id": ..., "type": "function", "function": {"name": ..., "arguments": "<json>"}}
        {"id": ..., "tool_name" | "toolName" | "name": ..., "arguments": {...}}
    """
    if not isinstance(entry, dict):
        return entry

    if isinstance(entry.get("function"), dict):
        function = entry["function"]
        fields = {
            "tool_name": function.get("name"),
            "arguments": decode_arguments(function.get("arguments")) or {},
        }
    else:
        fields = {
            "tool_name": entry.get("tool_name")
            or entry.get("toolName")
            or entry.get("name"),
            "arguments": decode_arguments(entry.get("arguments")) or {},
        }

    if entry.get("id"):
        fields["id"] = entry["id"]
    return fields


class ToolRoute(BaseModel):
    """One way of reaching a tool: which adapter, and under which name."""

    model_config = ConfigDict(frozen=True)

    adapter: str = Field(..., description="Adapter name serving this route")
    source: ToolSource = Field(..., description="Source tag of the adapter")
    remote_name: str = Field(..., description="Tool name as the adapter knows it")


class ToolDescriptor(BaseModel):
    """An invocable capability and the ordered routes that can serve it."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique tool identifier")
    description: str = Field(default="", description="Human-readable purpose")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema of accepted arguments",
    )
    source: ToolSource = Field(..., description="Preferred resolution strategy")
    routes: tuple[ToolRoute, ...] = Field(
        default=(), description="Fallback chain, in declaration order"
    )
    fallback: bool = Field(
        default=True,
        description="Whether a failing route falls through to the next route",
    )
    aliases: tuple[str, ...] = Field(
        default=(), description="Alternate spellings resolving to this tool"
    )
    fallback_for: Optional[str] = Field(
        default=None,
        description=(
            "Hosted backend this local tool stands in for. Listed only while "
            "that backend is disconnected."
        ),
    )
    fallback_tool: Optional[str] = Field(
        default=None,
        description="Tool name on the fallback_for backend that this local tool replaces",
    )

    def ordered_routes(self) -> list[ToolRoute]:
        """Routes sorted by source preference; ties keep declaration order."""
        return sorted(self.routes, key=lambda route: route.source.rank)

    def to_listing(self) -> dict[str, Any]:
        """Serialize for the tool listing endpoint."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "source": self.source.value,
        }


class ToolCallRequest(BaseModel):
    """One invocation the AI backend wants performed."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_call_id, description="Correlation token")
    tool_name: str = Field(..., min_length=1, description="Requested tool name")
    arguments: dict[str, Any] = Field(
        default_factory=dict, description="Argument name to value"
    )


class Success(BaseModel):
    """Successful tool outcome."""

    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    payload: Any = None


class Failure(BaseModel):
    """Failed tool outcome."""

    model_config = ConfigDict(frozen=True)

    status: Literal["failure"] = "failure"
    error: ToolErrorKind
    message: str


# Discriminated union - pydantic uses 'status' to pick the variant
Outcome = Annotated[Union[Success, Failure], Field(discriminator="status")]


class ToolCallResult(BaseModel):
    """Settled outcome of one tool call. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Id of the originating request")
    tool_name: str = Field(..., description="Tool name as requested")
    arguments: dict[str, Any] = Field(default_factory=dict)
    outcome: Outcome
    elapsed_ms: int = Field(default=0, ge=0, description="Wall-clock duration")
    source: Optional[ToolSource] = Field(
        default=None, description="Source of the adapter that served the call"
    )
    adapter: Optional[str] = Field(
        default=None, description="Name of the adapter that served the call"
    )

    @property
    def success(self) -> bool:
        return isinstance(self.outcome, Success)

    @classmethod
    def failed(
        cls,
        request: ToolCallRequest,
        kind: ToolErrorKind,
        message: str,
        elapsed_ms: int = 0,
        source: Optional[ToolSource] = None,
        adapter: Optional[str] = None,
    ) -> "ToolCallResult":
        return cls(
            id=request.id,
            tool_name=request.tool_name,
            arguments=request.arguments,
            outcome=Failure(error=kind, message=message),
            elapsed_ms=elapsed_ms,
            source=source,
            adapter=adapter,
        )

    def to_envelope(self) -> dict[str, Any]:
        """Return the ``{success, data|error}`` envelope."""
        if isinstance(self.outcome, Success):
            return {"success": True, "data": self.outcome.payload}
        return {"success": False, "error": self.outcome.message}


class Message(BaseModel):
    """One turn in the canonical conversation sequence."""

    role: Literal["user", "assistant", "tool", "system"]
    content: str = ""
    created_at: int = Field(default=0, description="Epoch milliseconds")
    tool_calls: Optional[list[ToolCallRequest]] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    error: Optional[bool] = None

    @field_validator("content", mode="before")
    @classmethod
    def none_content_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("tool_calls", mode="before")
    @classmethod
    def accept_wire_tool_calls(cls, v: Any) -> Any:
        if v is None:
            return v
        return [coerce_tool_call(entry) for entry in v]

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the frontend message shape."""
        payload: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
        }
        if self.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.tool_name,
                        "arguments": json.dumps(call.arguments),
                    },
                }
                for call in self.tool_calls
            ]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_name is not None:
            payload["tool_name"] = self.tool_name
        if self.error:
            payload["error"] = True
        return payload


class RawTurn(BaseModel):
    """The AI backend's reply before normalization."""

    content: str = ""
    tool_calls: list[ToolCallRequest] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def none_content_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class ChatRequest(BaseModel):
    """Request accepted by the chat endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, description="The user's utterance")
    session_id: Optional[str] = Field(
        default=None,
        alias="sessionId",
        description="Opaque session label. Sessions are stateless; only logged.",
    )
    history: list[Message] = Field(
        default_factory=list, description="Prior messages, oldest first"
    )


class ToolInvocationRequest(BaseModel):
    """Request accepted by the direct tool invocation endpoint."""

    name: str = Field(..., min_length=1, description="Tool name or alias")
    params: dict[str, Any] = Field(default_factory=dict)
