"""Command-line interface for the tool gateway.

Provides commands to serve the gateway over MCP stdio, list the tool
catalogue, invoke a single tool (optionally prompting for each parameter)
and chat with the AI backend, one turn or as a conversation. Uses the
same ToolGateway as the MCP server.
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional

import click

from gateway.normalizer import serialize_payload
from gateway.service import ToolGateway
from models.config import LoggingConfig, configure_logging, load_config
from models.schema import ChatRequest, Message

logger = logging.getLogger(__name__)

DISPLAY_LIMIT = 2000

JSON_PARAM_TYPES = {
    "string": click.STRING,
    "integer": click.INT,
    "number": click.FLOAT,
    "boolean": click.BOOL,
}


def truncate(text: str, limit: int = DISPLAY_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n... [truncated {len(text) - limit} characters]"


def build_gateway(config_path: str) -> ToolGateway:
    config = load_config(config_path)
    configure_logging(LoggingConfig(level=config.logging.level, file=None))
    return ToolGateway.from_config(config)


def prompt_arguments(schema: dict) -> dict[str, Any]:
    """Ask for each parameter of a tool schema on the terminal."""

    properties: dict = schema.get("properties") or {}
    required = set(schema.get("required") or [])
    arguments: dict[str, Any] = {}

    for name, prop in properties.items():
        prop = prop if isinstance(prop, dict) else {}
        label = name if name in required else f"{name} (optional)"
        if prop.get("description"):
            click.echo(f"  {name}: {prop['description']}")

        if prop.get("enum"):
            param_type = click.Choice([str(v) for v in prop["enum"]])
        elif prop.get("type") in ("array", "object"):
            param_type = click.STRING
        else:
            param_type = JSON_PARAM_TYPES.get(prop.get("type"), click.STRING)

        default = prop.get("default")
        skippable = default is None and name not in required
        if skippable:
            # blank input skips the parameter
            value = click.prompt(label, type=click.STRING, default="", show_default=False)
            if value == "":
                continue
            value = param_type.convert(value, None, None)
        else:
            value = click.prompt(label, type=param_type, default=default)

        if prop.get("type") in ("array", "object") and isinstance(value, str):
            value = json.loads(value)
        arguments[name] = value

    return arguments


def print_message(message: Message) -> None:
    if message.role == "assistant":
        if message.content:
            style = {"fg": "red"} if message.error else {}
            click.secho(f"assistant: {message.content}", **style)
        for call in message.tool_calls or []:
            click.secho(
                f"  -> {call.tool_name}({json.dumps(call.arguments)}) [{call.id}]",
                fg="cyan",
            )
    elif message.role == "tool":
        click.secho(f"tool {message.tool_name} [{message.tool_call_id}]:", fg="green")
        click.echo(truncate(message.content))
    else:
        click.echo(f"{message.role}: {message.content}")


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    default="config.yaml",
    help="Path to gateway configuration",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str):
    """Tool gateway commands."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.pass_context
def serve(ctx: click.Context):
    """Run the MCP server over stdio."""
    config_path = Path(ctx.obj["config_path"])
    if config_path.exists():
        os.environ["TOOL_GATEWAY_CONFIG"] = str(config_path.resolve())

    from server import run

    run()


@cli.command()
@click.option(
    "--format",
    "-f",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
@click.pass_context
def tools(ctx: click.Context, format: str) -> None:
    """List the tool catalogue grouped by source.

    Example:
        tool-gateway tools --format json
    """
    try:
        gateway = build_gateway(ctx.obj["config_path"])
        asyncio.run(gateway.start())
        listing = gateway.list_tools()

        if format == "json":
            click.echo(json.dumps(listing, indent=2))
            return

        if not listing:
            click.echo("No tools available.")
            return

        grouped: dict[str, list[dict]] = {}
        for entry in listing:
            grouped.setdefault(entry["source"], []).append(entry)
        for source, entries in grouped.items():
            click.secho(f"\n{source} ({len(entries)})", bold=True)
            for entry in entries:
                click.echo(f"  {entry['name']}: {entry['description'][:100]}")

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("name")
@click.option("--params", "-p", default="{}", help="Tool arguments as a JSON object")
@click.option(
    "--interactive",
    "-i",
    is_flag=True,
    help="Prompt for each parameter from the tool schema",
)
@click.pass_context
def call(ctx: click.Context, name: str, params: str, interactive: bool) -> None:
    """Invoke one tool directly.

    Example:
        tool-gateway call brave_web_search --params '{"query": "cats"}'
    """
    try:
        gateway = build_gateway(ctx.obj["config_path"])

        async def _run() -> dict:
            await gateway.start()
            arguments: Optional[dict] = json.loads(params)
            if interactive:
                descriptor = gateway.registry.resolve(name)
                if descriptor is None:
                    raise click.ClickException(f"Unknown tool: {name}")
                click.echo(f"{descriptor.name}: {descriptor.description}")
                arguments = {**arguments, **prompt_arguments(descriptor.parameters)}
            return await gateway.invoke_tool(name, arguments)

        response = asyncio.run(_run())

        if response["success"]:
            click.secho(f"{response['tool']}: success", fg="green")
            click.echo(truncate(serialize_payload(response["result"])))
        else:
            click.secho(f"{response['tool']}: {response['error']}", fg="red", err=True)
            sys.exit(1)

    except json.JSONDecodeError as e:
        click.echo(f"Error: --params is not valid JSON: {e}", err=True)
        sys.exit(1)
    except click.ClickException:
        raise
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


async def run_turn(
    gateway: ToolGateway, message: str, session: Optional[str], history: list[Message]
) -> list[Message]:
    """Run one turn, print it and, when tools ran, print the AI's summary of their results.

    Returns the messages to append to the history (user message included).
    """
    user = Message(role="user", content=message)
    reply = await gateway.chat(ChatRequest(message=message, session_id=session, history=history))
    messages = reply if isinstance(reply, list) else [reply]
    for item in messages:
        print_message(item)

    if len(messages) > 1:
        summary = await gateway.follow_up([*history, user, *messages])
        print_message(summary)
        messages.append(summary)

    return [user, *messages]


@cli.command()
@click.argument("message", required=False)
@click.option("--session", "-s", default=None, help="Session label for the logs")
@click.pass_context
def chat(ctx: click.Context, message: Optional[str], session: Optional[str]) -> None:
    """Chat with the AI backend using the gateway's tools.

    With MESSAGE, runs one turn. Without it, starts a conversation that keeps
    its history until 'exit' or end of input.

    Example:
        tool-gateway chat "search for cats"
    """
    try:
        gateway = build_gateway(ctx.obj["config_path"])

        async def _run() -> bool:
            await gateway.start()
            if message is not None:
                turn = await run_turn(gateway, message, session, [])
                return any(item.error for item in turn)

            history: list[Message] = []
            click.echo("Type 'exit' to quit.")
            while True:
                try:
                    text = click.prompt("you", prompt_suffix="> ").strip()
                except click.Abort:
                    click.echo()
                    return False
                if text.lower() in ("exit", "quit"):
                    return False
                if not text:
                    continue
                turn = await run_turn(gateway, text, session, history)
                # failed turns stay out of the conversation
                if not any(item.error for item in turn):
                    history.extend(turn)

        failed = asyncio.run(_run())
        if failed:
            sys.exit(1)

    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
