"""Tool Gateway MCP Server.

This MCP server exposes 3 tools via the Model Context Protocol:
1. chat - Run one conversational turn; tool calls requested by the AI backend
   are dispatched and returned as an ordered message sequence
2. list_tools - List the tools the gateway can currently dispatch
3. invoke_tool - Call one tool directly with explicit parameters

Tool calls are routed to in-process local handlers or to hosted MCP tool
servers, each reached through a fresh session per call.
"""
import asyncio
import json
import logging
import os
from pathlib import Path

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import ValidationError

from gateway.service import ToolGateway
from models.config import configure_logging, load_config
from models.schema import ChatRequest, ToolInvocationRequest

# Project directory (where server.py is located) - for config and logs
PROJECT_DIR = Path(__file__).parent.absolute()

configure_logging(log_dir=PROJECT_DIR)
logger = logging.getLogger(__name__)


# Initialize server
app = Server("tool-gateway")


# Load configuration (TOOL_GATEWAY_CONFIG overrides the project config.yaml)
try:
    config_path = Path(os.getenv("TOOL_GATEWAY_CONFIG", PROJECT_DIR / "config.yaml"))
    logger.info(f"Loading config from: {config_path}")
    config = load_config(str(config_path))
    configure_logging(config.logging, log_dir=PROJECT_DIR)
    logger.info("Configuration loaded successfully")
except Exception as e:
    logger.error(f"Failed to load config: {e}", exc_info=True)
    raise


gateway = ToolGateway.from_config(config)
_startup_lock = asyncio.Lock()
_started = False


async def ensure_started() -> None:
    """Run tool discovery once, on first use."""
    global _started

    async with _startup_lock:
        if not _started:
            await gateway.start()
            _started = True


def _json_response(payload) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


def describe_validation_error(e: ValidationError) -> str:
    """One line per problem, e.g. 'message: String should have at least 1 character'."""
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'request'}: {error['msg']}"
        for error in e.errors()
    )


def _error_response(e: Exception) -> list[TextContent]:
    return _json_response(
        {
            "error": str(e),
            "error_type": type(e).__name__,
            "status": "failed",
        }
    )


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available MCP tools."""

    chat_tool = Tool(
        name="chat",
        description=(
            "Send a user message to the AI backend with the gateway's tools attached. "
            "When the AI requests tool calls, they are executed concurrently and the "
            "reply is an ordered array: the assistant message carrying the calls, then "
            "one tool message per call, in call order. Without tool calls the reply is "
            "a single assistant message."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "message": {
                    "type": "string",
                    "description": "The user's message",
                    "minLength": 1,
                },
                "sessionId": {
                    "type": "string",
                    "description": "Optional session label (requests are stateless)",
                },
                "history": {
                    "type": "array",
                    "items": {"type": "object"},
                    "description": "Prior messages, oldest first",
                },
            },
            "required": ["message"],
        },
    )

    list_tools_tool = Tool(
        name="list_tools",
        description=(
            "List the tools the gateway can dispatch right now, local tools first, "
            "with their parameter schemas and source (local, hosted-primary, "
            "hosted-secondary)."
        ),
        inputSchema={"type": "object", "properties": {}},
    )

    invoke_tool_tool = Tool(
        name="invoke_tool",
        description=(
            "Invoke one gateway tool directly by name or alias. Returns "
            "{success, result|error, tool} where tool is the canonical tool name."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "name": {
                    "type": "string",
                    "description": "Tool name or alias",
                    "minLength": 1,
                },
                "params": {
                    "type": "object",
                    "description": "Tool arguments",
                    "default": {},
                },
            },
            "required": ["name"],
        },
    )

    return [chat_tool, list_tools_tool, invoke_tool_tool]


@app.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """
    Handle tool calls from MCP client.

    Args:
        name: Tool name ("chat", "list_tools", "invoke_tool")
        arguments: Tool arguments as dict

    Returns:
        List of TextContent with JSON response
    """
    logger.info(f"Tool call received: {name}")

    if name == "chat":
        return await handle_chat(arguments)
    if name == "list_tools":
        return await handle_list_tools(arguments)
    if name == "invoke_tool":
        return await handle_invoke_tool(arguments)

    error_msg = f"Unknown tool: {name}"
    logger.error(error_msg)
    raise ValueError(error_msg)


async def handle_chat(arguments: dict) -> list[TextContent]:
    """Run one conversational turn.

    Every failure, including a malformed request, is answered with an
    assistant message flagged error=True.
    """

    try:
        request = ChatRequest(**arguments)
    except ValidationError as e:
        logger.warning(f"Rejected chat request: {describe_validation_error(e)}")
        return _json_response(
            ToolGateway.error_reply(
                f"Invalid chat request: {describe_validation_error(e)}"
            ).to_wire()
        )

    try:
        await ensure_started()
        reply = await gateway.chat(request)
        if isinstance(reply, list):
            logger.info(f"Chat turn produced {len(reply)} messages")
            return _json_response([message.to_wire() for message in reply])
        return _json_response(reply.to_wire())

    except Exception as e:
        logger.error(f"Error in chat: {type(e).__name__}: {e}", exc_info=True)
        return _json_response(
            ToolGateway.error_reply("The gateway could not complete this chat turn").to_wire()
        )


async def handle_list_tools(arguments: dict) -> list[TextContent]:
    """Return the current tool listing."""

    try:
        await ensure_started()
        return _json_response(gateway.list_tools())
    except Exception as e:
        logger.error(f"Error listing tools: {type(e).__name__}: {e}", exc_info=True)
        return _error_response(e)


async def handle_invoke_tool(arguments: dict) -> list[TextContent]:
    """Invoke one tool directly."""

    try:
        request = ToolInvocationRequest(**arguments)
        await ensure_started()

        response = await gateway.invoke_tool(request.name, request.params)
        logger.info(
            f"Direct invocation of {response['tool']}: success={response['success']}"
        )
        return _json_response(response)

    except Exception as e:
        logger.error(f"Error invoking tool: {type(e).__name__}: {e}", exc_info=True)
        return _error_response(e)


async def main():
    """Run the MCP server."""
    logger.info("Starting Tool Gateway MCP Server...")
    await ensure_started()
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
