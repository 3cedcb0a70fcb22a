#!/usr/bin/env python3
"""
Pulse Agent - Main Entry Point
"""
import json
import socket
import sys

import click
from rich.console import Console
from rich.table import Table

from pulse_agent.agent.intent import CommandInterpreter, IssueContext, ParserConfig
from pulse_agent.agent.parsers import ParameterExtractor
from pulse_agent.utils.config import ConfigDefaults, get_environment, load_config
from pulse_agent.workflow.progress_config import (
    ConfigValidationError,
    ProgressConfigHolder,
    get_progress_config,
    validate_progress_config,
)

console = Console()


def check_port_available(port: int, host: str = ConfigDefaults.SERVER_HOST_DEFAULT) -> bool:
    """Check if a port is available for binding"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


@click.group()
@click.option('--config', 'config_path', default=ConfigDefaults.CONFIG_PATH_DEFAULT,
              show_default=True, help='Path to the YAML config file')
@click.pass_context
def cli(ctx: click.Context, config_path: str):
    """Pulse: ART planning agent and workflow automation for Linear."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


@cli.command()
@click.option('--port', type=int, default=None, help='Port to run server on')
@click.option('--host', default=None, help='Host to bind to')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
@click.pass_context
def serve(ctx: click.Context, port, host, reload: bool):
    """Run the webhook and management API."""
    import os

    import uvicorn

    config = load_config(ctx.obj['config_path'])
    host = host or config.server.host
    port = port or config.server.port

    if not check_port_available(port, host):
        console.print(f"[bold red]Port {port} is already in use[/bold red]")
        console.print(f"  Use a different port: [bold]pulse-agent serve --port {port + 1}[/bold]")
        sys.exit(1)

    # The API lifespan loads the same file
    os.environ['PULSE_CONFIG'] = ctx.obj['config_path']

    console.print("[bold blue]Starting Pulse Agent API[/bold blue]")
    console.print(f"Environment: {config.environment}")
    console.print(f"Server: http://{host}:{port}")
    console.print(f"Webhook: http://{host}:{port}/integrations/linear/webhook")
    if not config.linear.api_key:
        console.print("[yellow]WARNING: LINEAR_API_KEY not set, Linear calls will fail[/yellow]")
    if not config.linear.webhook_secret:
        console.print("[yellow]WARNING: LINEAR_WEBHOOK_SECRET not set, webhook signatures are not checked[/yellow]")
    console.print("[bold]Press Ctrl+C to stop[/bold]\n")

    try:
        uvicorn.run("api.main:app", host=host, port=port, reload=reload, log_level=config.logging.level.lower())
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped by user[/yellow]")


@cli.command()
@click.argument('text')
@click.option('--team', 'team_id', default='', help='Team id for issue context')
@click.option('--labels', default='', help='Comma separated issue labels for context')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@click.pass_context
def parse(ctx: click.Context, text: str, team_id: str, labels: str, as_json: bool):
    """Classify TEXT and show the extracted parameters."""
    config = load_config(ctx.obj['config_path'])
    interpreter = CommandInterpreter(ParserConfig.from_settings(config.parser, config.linear.agent_mention))
    context = IssueContext(
        team_id=team_id,
        labels=[label.strip() for label in labels.split(',') if label.strip()],
    )

    parsed = interpreter.parse(text, context)
    params = ParameterExtractor().extract(parsed) if parsed.is_known else None

    if as_json:
        click.echo(json.dumps(
            {"intent": parsed.to_dict(), "parameters": params.to_dict() if params else None},
            indent=2,
            default=str,
        ))
        return

    color = "green" if parsed.is_known else "yellow"
    console.print(f"Intent: [bold {color}]{parsed.intent.value}[/bold {color}]")
    console.print(f"Confidence: {parsed.confidence:.2f} (min {config.parser.min_confidence})")
    if parsed.matched_pattern:
        console.print(f"[dim]Pattern: {parsed.matched_pattern}[/dim]")

    if params is None:
        suggestions = parsed.metadata.get("suggestions") or []
        if suggestions:
            console.print("Suggestions: " + ", ".join(suggestions))
        return

    table = Table(title="Parameters")
    table.add_column("Name")
    table.add_column("Value")
    table.add_column("Source")
    for name, value in params.parameters.items():
        if name in params.explicit:
            source = "explicit"
        elif name in params.inferred:
            source = "inferred"
        else:
            source = "default"
        table.add_row(name, str(value), source)
    console.print(table)


@cli.command('check-config')
@click.option('--environment', default=None, help='Environment to check (defaults to PULSE_ENV)')
@click.pass_context
def check_config(ctx: click.Context, environment):
    """Validate the progress tracker configuration for an environment."""
    config = load_config(ctx.obj['config_path'])
    environment = environment or config.environment or get_environment()

    progress = get_progress_config(environment)
    errors = validate_progress_config(progress)
    if not errors and config.progress:
        try:
            progress = ProgressConfigHolder(progress).update(config.progress)
        except ConfigValidationError as e:
            errors = e.errors

    if errors:
        console.print(f"[bold red]Invalid progress configuration for {environment}[/bold red]")
        for error in errors:
            console.print(f"  - {error}")
        sys.exit(1)

    table = Table(title=f"Progress configuration ({environment})")
    table.add_column("Setting")
    table.add_column("Value")
    for section, values in progress.model_dump().items():
        for key, value in values.items():
            table.add_row(f"{section}.{key}", str(value))
    console.print(table)
    console.print("[bold green]Configuration is valid[/bold green]")


if __name__ == "__main__":
    cli()
