"""Unit tests for Pydantic models."""
import pytest
from pydantic import ValidationError

from models.errors import ToolErrorKind
from models.schema import (
    ChatRequest,
    Failure,
    Message,
    Success,
    ToolCallRequest,
    ToolCallResult,
    ToolSource,
    decode_arguments,
    new_call_id,
)


class TestToolSource:
    """Tests for source preference."""

    def test_rank_order(self):
        ranked = sorted(ToolSource, key=lambda s: s.rank)
        assert ranked == [ToolSource.HOSTED_PRIMARY, ToolSource.HOSTED_SECONDARY, ToolSource.LOCAL]

    def test_is_hosted(self):
        assert ToolSource.HOSTED_SECONDARY.is_hosted
        assert not ToolSource.LOCAL.is_hosted


class TestToolCallModels:
    """Tests for requests, outcomes and results."""

    def test_request_gets_generated_id(self):
        request = ToolCallRequest(tool_name="echo")
        assert request.id.startswith("call_")
        assert request.arguments == {}
        assert new_call_id() != new_call_id()

    def test_request_is_frozen(self):
        request = ToolCallRequest(tool_name="echo")
        with pytest.raises(ValidationError):
            request.tool_name = "other"

    def test_outcome_discriminated_by_status(self):
        result = ToolCallResult.model_validate(
            {
                "id": "c1",
                "tool_name": "t",
                "outcome": {"status": "failure", "error": "UnknownTool", "message": "nope"},
            }
        )
        assert isinstance(result.outcome, Failure)
        assert result.outcome.error is ToolErrorKind.UNKNOWN_TOOL
        assert result.success is False

    def test_envelopes(self):
        request = ToolCallRequest(id="c1", tool_name="t")
        ok = ToolCallResult(id="c1", tool_name="t", outcome=Success(payload=[1]), elapsed_ms=3)
        failed = ToolCallResult.failed(request, ToolErrorKind.ADAPTER_UNAVAILABLE, "down")

        assert ok.to_envelope() == {"success": True, "data": [1]}
        assert failed.to_envelope() == {"success": False, "error": "down"}
        assert failed.elapsed_ms == 0

    def test_negative_elapsed_rejected(self):
        with pytest.raises(ValidationError):
            ToolCallResult(id="c1", tool_name="t", outcome=Success(), elapsed_ms=-1)


class TestMessage:
    """Tests for the canonical message model."""

    def test_none_content_becomes_empty(self):
        assert Message(role="assistant", content=None).content == ""

    def test_accepts_function_shaped_tool_calls(self):
        message = Message(
            role="assistant",
            tool_calls=[
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "brave_web_search", "arguments": '{"query": "cats"}'},
                }
            ],
        )
        assert message.tool_calls[0].tool_name == "brave_web_search"
        assert message.tool_calls[0].arguments == {"query": "cats"}

    def test_accepts_flat_tool_calls(self):
        message = Message(
            role="assistant",
            tool_calls=[{"id": "call_2", "toolName": "quote", "arguments": {"symbol": "AAPL"}}],
        )
        assert message.tool_calls[0].tool_name == "quote"
        assert message.tool_calls[0].id == "call_2"

    def test_invalid_role(self):
        with pytest.raises(ValidationError):
            Message(role="robot", content="beep")

    def test_wire_omits_unset_fields(self):
        assert Message(role="user", content="hi", created_at=5).to_wire() == {
            "role": "user",
            "content": "hi",
            "created_at": 5,
        }


class TestDecodeArguments:
    """Tests for argument decoding."""

    def test_variants(self):
        assert decode_arguments(None) == {}
        assert decode_arguments("") == {}
        assert decode_arguments('{"a": 1}') == {"a": 1}
        assert decode_arguments({"a": 1}) == {"a": 1}
        assert decode_arguments("[1, 2]") is None
        assert decode_arguments("{broken") is None
        assert decode_arguments(42) is None


class TestChatRequest:
    """Tests for the chat request model."""

    def test_session_id_alias(self):
        request = ChatRequest(message="hi", sessionId="s-1")
        assert request.session_id == "s-1"
        assert ChatRequest(message="hi", session_id="s-2").session_id == "s-2"

    def test_empty_message_rejected(self):
        with pytest.raises(ValidationError):
            ChatRequest(message="")

    def test_history_parsed(self):
        request = ChatRequest(
            message="hi", history=[{"role": "tool", "content": "{}", "tool_call_id": "c1"}]
        )
        assert request.history[0].tool_call_id == "c1"
