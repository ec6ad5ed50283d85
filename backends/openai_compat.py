"""OpenAI-compatible chat completions backend (OpenRouter, OpenAI, local servers)."""
import json
import logging
from typing import Any, Sequence, Tuple

from backends.base_http import BaseHTTPBackend
from models.schema import Message, RawTurn, ToolCallRequest, ToolDescriptor, decode_arguments

logger = logging.getLogger(__name__)


def tool_definition(descriptor: ToolDescriptor) -> dict[str, Any]:
    """Describe a tool in the function-calling format."""
    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": descriptor.parameters,
        },
    }


def message_payload(message: Message) -> dict[str, Any]:
    """Convert a canonical message to a chat completions message."""

    payload: dict[str, Any] = {"role": message.role, "content": message.content}
    if message.tool_calls:
        payload["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {
                    "name": call.tool_name,
                    "arguments": json.dumps(call.arguments),
                },
            }
            for call in message.tool_calls
        ]
    if message.role == "tool" and message.tool_call_id:
        payload["tool_call_id"] = message.tool_call_id
    return payload


class OpenAICompatibleBackend(BaseHTTPBackend):
    """
    Backend for any server speaking the OpenAI chat completions API.

    API Reference: https://platform.openai.com/docs/api-reference/chat
    Default endpoint: https://openrouter.ai/api/v1
    """

    def build_request(
        self, messages: Sequence[Message], tools: Sequence[ToolDescriptor]
    ) -> Tuple[str, dict[str, str], dict]:
        """
        Build a chat completions request.

        POST /chat/completions
        Authorization: Bearer <api_key>   (only when an api key is configured)

        Returns:
            Tuple of (endpoint, headers, body)
        """
        endpoint = "/chat/completions"

        headers = {"Content-Type": "application/json", **self.default_headers}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        conversation = [message_payload(message) for message in messages]
        if self.system_prompt and not any(m.role == "system" for m in messages):
            conversation.insert(0, {"role": "system", "content": self.system_prompt})

        body: dict[str, Any] = {
            "model": self.model,
            "messages": conversation,
            "stream": False,
        }
        if tools:
            body["tools"] = [tool_definition(descriptor) for descriptor in tools]
            body["tool_choice"] = "auto"

        return (endpoint, headers, body)

    def parse_response(self, response_json: dict) -> RawTurn:
        """
        Parse a chat completions response.

        {
          "choices": [{
            "message": {
              "role": "assistant",
              "content": "text or null",
              "tool_calls": [{"id": "call_1", "type": "function",
                              "function": {"name": "x", "arguments": "{...}"}}]
            }
          }]
        }

        Raises:
            KeyError: If response doesn't contain expected fields
            IndexError: If choices array is empty
        """
        if "choices" not in response_json:
            raise KeyError(
                f"Response missing 'choices' field. "
                f"Received keys: {list(response_json.keys())}"
            )

        if len(response_json["choices"]) == 0:
            raise IndexError("Response has empty 'choices' array")

        choice = response_json["choices"][0]

        if "message" not in choice:
            raise KeyError(
                f"Choice missing 'message' field. "
                f"Received keys: {list(choice.keys())}"
            )

        message = choice["message"]
        requests = []
        for entry in message.get("tool_calls") or []:
            function = entry.get("function") or {}
            name = function.get("name")
            if not name:
                logger.warning(f"Dropping tool call without a function name: {entry}")
                continue

            arguments = decode_arguments(function.get("arguments"))
            if arguments is None:
                logger.warning(
                    f"Tool call {name} has undecodable arguments, using empty object: "
                    f"{str(function.get('arguments'))[:200]}"
                )
                arguments = {}

            fields: dict[str, Any] = {"tool_name": name, "arguments": arguments}
            if entry.get("id"):
                fields["id"] = entry["id"]
            requests.append(ToolCallRequest(**fields))

        return RawTurn(content=message.get("content"), tool_calls=requests)
