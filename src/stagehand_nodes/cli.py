"""Command line host for running the nodes outside a workflow engine."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import typer
import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from stagehand_nodes import __version__
from stagehand_nodes.constants import AI_LANGUAGE_MODEL_CONNECTION, LOG_LEVEL
from stagehand_nodes.errors import NodeError
from stagehand_nodes.host import NodeExecutionContext, NodeExecutionData
from stagehand_nodes.logging_config import setup_logging
from stagehand_nodes.models import ModelConfig
from stagehand_nodes.node_metadata import (
    NodeDescription,
    get_all_node_metadata,
    get_node_class,
    get_node_metadata,
    is_property_visible,
)
from stagehand_nodes.nodes import CdpToolsNode

console = Console()

_HELP = """\
Run Stagehand workflow nodes from the command line.

[bold]Quick start:[/bold]
  [cyan]stagehand-nodes nodes[/cyan]                     List available nodes
  [cyan]stagehand-nodes tree ws://localhost:9222/...[/cyan]  Dump a page's accessibility tree\
"""

app = typer.Typer(
    help=_HELP,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


@app.callback()
def main(
    log_level: str = typer.Option(
        LOG_LEVEL,
        "--log-level",
        "-l",
        help="Set the logging level (DEBUG, INFO, WARNING, ERROR)",
        case_sensitive=False,
        envvar="LOG_LEVEL",
    ),
    env_file: Path | None = typer.Option(  # noqa: B008
        None,
        "--env-file",
        help="Load environment variables (API keys) from this file instead of ./.env",
    ),
) -> None:
    """Configure logging and load the environment before any command runs."""
    load_dotenv(env_file)
    setup_logging(level=log_level.upper())


@app.command()
def version() -> None:
    """Show the current version of stagehand-nodes."""
    console.print(f"stagehand-nodes version: [bold]{__version__}[/bold]")


@app.command()
def nodes() -> None:
    """List the registered nodes."""
    table = Table(title="Nodes")
    table.add_column("Name", style="cyan")
    table.add_column("Display name")
    table.add_column("Description")
    for name, description in sorted(get_all_node_metadata().items()):
        table.add_row(name, description.display_name, description.description)
    console.print(table)


@app.command()
def describe(name: str = typer.Argument(..., help="Node name, e.g. stagehand")) -> None:
    """Print a node's description as the JSON a workflow host loads."""
    description = get_node_metadata(name)
    if description is None:
        available = ", ".join(sorted(get_all_node_metadata()))
        console.print(f"[red]Error:[/red] Unknown node '{name}'. Available nodes: {available}")
        raise typer.Exit(1)
    console.print_json(data=description.to_dict())


def _load_yaml(path: Path, what: str) -> Any:  # noqa: ANN401
    try:
        with path.open(encoding="utf-8") as f:
            return yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as exc:
        console.print(f"[red]Error:[/red] Could not load {what} from {path}: {exc}")
        raise typer.Exit(1) from None


def _hidden_parameters(description: NodeDescription, parameters: dict[str, Any]) -> list[str]:
    """Names of given parameters the host would not show for these settings."""
    hidden = []
    for name in parameters:
        prop = description.get_property(name)
        if prop is not None and not is_property_visible(prop, parameters):
            hidden.append(name)
    return hidden


def _print_results(results: list[NodeExecutionData]) -> None:
    typer.echo(json.dumps([result.to_dict() for result in results], indent=2, default=str))


@app.command()
def run(
    name: str = typer.Argument(..., help="Node name, e.g. stagehand"),
    params: Path = typer.Option(..., "--params", "-p", help="YAML file with the node parameters"),  # noqa: B008
    items: Path | None = typer.Option(  # noqa: B008
        None,
        "--items",
        "-i",
        help="YAML file with a list of input items (default: one empty item)",
    ),
    model_provider: str | None = typer.Option(None, "--model-provider", help="Model provider, e.g. openai"),
    model_id: str | None = typer.Option(None, "--model-id", help="Model ID, e.g. gpt-4o"),
    api_key: str | None = typer.Option(
        None,
        "--api-key",
        help="API key for the model (default: the provider's environment variable)",
    ),
) -> None:
    """Run a node once and print its output items as JSON."""
    try:
        node_class = get_node_class(name)
    except KeyError as exc:
        console.print(f"[red]Error:[/red] {exc.args[0]}")
        raise typer.Exit(1) from None

    parameters = _load_yaml(params, "parameters") or {}
    if not isinstance(parameters, dict):
        console.print(f"[red]Error:[/red] {params} must contain a mapping of parameters")
        raise typer.Exit(1)
    hidden = _hidden_parameters(node_class.description, parameters)
    if hidden:
        console.print(f"[yellow]Warning:[/yellow] Ignoring parameters not used with these settings: {', '.join(hidden)}")
    input_items = _load_yaml(items, "items") if items is not None else [{}]
    if not isinstance(input_items, list):
        console.print(f"[red]Error:[/red] {items} must contain a list of items")
        raise typer.Exit(1)

    connections: dict[str, list[Any]] = {}
    if model_provider and model_id:
        connections[AI_LANGUAGE_MODEL_CONNECTION] = [
            ModelConfig(provider=model_provider, id=model_id, api_key=api_key),
        ]

    context = NodeExecutionContext(
        items=input_items,
        parameters=parameters,
        connections=connections,
        node_name=node_class.description.display_name,
    )
    try:
        results = asyncio.run(node_class().execute(context))
    except NodeError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None

    _print_results(results)
    if any(result.error is not None for result in results):
        raise typer.Exit(1)


@app.command()
def tree(
    cdp_url: str = typer.Argument(..., help="DevTools URL, e.g. ws://localhost:9222/devtools/browser/..."),
    show_locators: bool = typer.Option(False, "--locators", help="Print the locator list after the tree"),
) -> None:
    """Print the current page's renumbered accessibility tree."""
    context = NodeExecutionContext(items=[{}], parameters={"url": cdp_url}, node_name="CDP Tools")
    try:
        results = asyncio.run(CdpToolsNode().execute(context))
    except NodeError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from None

    output = results[0].json
    typer.echo(output["accessibilityTree"])
    if show_locators:
        for index, locator in enumerate(output["xpaths"]):
            typer.echo(f"[{index}] {locator if locator is not None else '-'}")
