"""Command-line interface for toolstream."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from toolstream import __version__
from toolstream.config import ToolstreamConfig, load_config
from toolstream.core.handle import TurnCallbacks, start_turn
from toolstream.core.orchestrator import TurnResult, TurnState
from toolstream.errors import AdapterError
from toolstream.tools.builtin import builtin_plugins
from toolstream.tools.openapi import OpenAPITool
from toolstream.tools.registry import ToolRegistry
from toolstream.types import FunctionCall, Message

console = Console()


def format_tool_call(call: FunctionCall) -> str:
    """Console markup for a tool call; names and arguments are shown literally."""
    return f"\n[cyan]> {escape(call.name)}[/cyan] [dim]{escape(call.arguments)}[/dim]"


def build_registry(config: ToolstreamConfig) -> ToolRegistry:
    """Registry with built-in, discovered and configured plugins."""
    registry = ToolRegistry()
    registry.register_many(builtin_plugins(os.environ.get("ALIBABA_API_KEY", "")))
    registry.discover()
    registry.register_many(config.plugins)
    return registry


async def _run_chat(
    config: ToolstreamConfig, prompt: str, plugin_ids: list[str], system: str | None,
) -> TurnResult:
    registry = build_registry(config)
    messages: list[Message] = []
    if system:
        messages.append(Message(role="system", content=system))
    messages.append(Message(role="user", content=prompt))

    def on_thinking(text: str) -> None:
        console.print(text, style="dim italic", end="", soft_wrap=True, highlight=False)

    def on_content(text: str) -> None:
        console.print(text, end="", soft_wrap=True, markup=False, highlight=False)

    def on_tool_call(call: FunctionCall) -> None:
        console.print(format_tool_call(call))

    def on_error(kind: str, detail: str) -> None:
        console.print(f"\n[red]{kind} error:[/red] {escape(detail)}")

    handle = start_turn(
        messages,
        plugin_ids,
        config,
        registry=registry,
        callbacks=TurnCallbacks(
            on_thinking=on_thinking,
            on_content=on_content,
            on_tool_call=on_tool_call,
            on_error=on_error,
        ),
    )
    try:
        return await handle.wait()
    except asyncio.CancelledError:
        handle.cancel()
        raise


@click.group()
@click.version_option(__version__, prog_name="toolstream")
@click.option("--config", "-c", "config_path", default=None,
              type=click.Path(dir_okay=False), help="Path to toolstream.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Streaming chat turns with OpenAPI tools."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)
    ctx.obj = load_config(config_path)


@main.command()
@click.argument("prompt")
@click.option("--plugin", "-p", "plugin_ids", multiple=True,
              help="Plugin id to offer as tools (repeatable)")
@click.option("--system", "-s", default=None, help="System prompt")
@click.option("--no-stream", is_flag=True, help="Request a single non-streaming response")
@click.option("--max-round-trips", type=int, default=None,
              help="Override the tool round-trip budget")
@click.pass_obj
def chat(
    config: ToolstreamConfig,
    prompt: str,
    plugin_ids: tuple[str, ...],
    system: str | None,
    no_stream: bool,
    max_round_trips: int | None,
) -> None:
    """Run one turn for PROMPT and print the answer as it streams."""
    if no_stream:
        config.turn.stream = False
    if max_round_trips is not None:
        config.turn.max_round_trips = max_round_trips

    try:
        result = asyncio.run(_run_chat(config, prompt, list(plugin_ids), system))
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")
        raise SystemExit(130)

    console.print()
    if result.state == TurnState.DONE and result.truncated:
        console.print(
            f"[yellow]Stopped after {result.round_trips} tool round-trip(s).[/yellow]"
        )
    if result.state == TurnState.ERRORED:
        raise SystemExit(1)


@main.command()
@click.argument("document", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print raw function schemas as JSON")
def inspect(document: Path, as_json: bool) -> None:
    """Show the functions an OpenAPI DOCUMENT would expose."""
    try:
        tool = OpenAPITool.from_document(document.read_text())
    except AdapterError as e:
        console.print(f"[red]Invalid tool description:[/red] {e}")
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps([s.to_openai_schema() for s in tool.schemas], indent=2))
        return

    table = Table(title=f"{tool.title or document.name} {tool.version}".strip())
    table.add_column("Function", style="cyan")
    table.add_column("Method")
    table.add_column("Path")
    table.add_column("Parameters")
    for op, schema in zip(tool.operations, tool.schemas):
        required = set(schema.parameters.get("required", []))
        params = ", ".join(
            name + ("" if name in required else "?")
            for name in schema.parameters.get("properties", {})
        )
        table.add_row(schema.name, op.method.upper(), op.path, params or "-")
    console.print(table)


if __name__ == "__main__":
    main()
