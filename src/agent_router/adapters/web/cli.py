"""CLI for running the agent router server.

This module provides a command-line interface for starting the FastAPI-based
router with configurable options.
"""

import secrets
import socket
from pathlib import Path

import click
import psutil
import uvicorn

from agent_router import __version__
from agent_router.adapters.web.server import create_web_adapter
from agent_router.config import Config, ConfigError, load_config, validate_config
from agent_router.utils.telemetry import (
    get_logger,
    setup_logging,
    setup_tracing,
    start_metrics_server,
)


def get_lan_ip() -> str:
    """Return the first non-loopback IPv4 address, or ``localhost``."""
    try:
        interfaces = psutil.net_if_addrs()
    except (psutil.Error, OSError):
        return "localhost"

    for addresses in interfaces.values():
        for address in addresses:
            if address.family == socket.AF_INET and not address.address.startswith(
                "127."
            ):
                return address.address
    return "localhost"


def mask_token(token: str) -> str:
    return f"{token[:8]}..."


def print_banner(config: Config, lan_ip: str) -> None:
    port = config.server.port
    rule = "=" * 33
    click.echo(rule)
    click.echo(f"AgentHUD Router v{__version__}")
    click.echo(rule)
    click.echo(f"LAN IP:  {lan_ip}")
    click.echo(f"WS URL:  ws://{lan_ip}:{port}/ws")
    click.echo(f"HTTP:    http://{lan_ip}:{port}/action")
    click.echo(f"Token:   {mask_token(config.server.token)}")
    click.echo("")
    simulator = "ENABLED (4 fake agents)" if config.simulator.enabled else "DISABLED"
    click.echo(f"Simulator: {simulator}")
    click.echo("")

    if config.simulator.enabled:
        click.echo("Example curl command:")
        click.echo(f"curl -X POST http://{lan_ip}:{port}/action \\")
        click.echo('  -H "Content-Type: application/json" \\')
        click.echo(f'  -H "{config.server.token_header}: <token>" \\')
        click.echo("  -d '{\"agent_id\":\"agent-1\",\"action\":\"approve\"}'")
        click.echo("")


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--token", default=None, help="Shared secret for clients")
@click.option(
    "--simulator/--no-simulator",
    default=None,
    help="Drive four fake agents with synthetic load",
)
@click.option("--log-level", default=None, help="Log level")
def run_server(
    config_path: Path | None,
    host: str | None,
    port: int | None,
    token: str | None,
    simulator: bool | None,
    log_level: str | None,
) -> None:
    """Run the agent router server."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    # CLI options override file and environment
    if host is not None:
        config.server.host = host
    if port is not None:
        config.server.port = port
    if token is not None:
        config.server.token = token
    if simulator is not None:
        config.simulator.enabled = simulator
    if log_level is not None:
        config.logging.level = log_level.upper()  # type: ignore[assignment]

    try:
        validate_config(config)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(
        config.logging.level,
        enable_redaction=config.logging.enable_redaction,
        log_format=config.logging.format,
    )
    logger = get_logger("agent_router.cli")

    print_banner(config, get_lan_ip())

    if config.metrics.enabled:
        start_metrics_server(config.metrics.port)

    web_adapter = create_web_adapter(config=config)

    if config.tracing.enabled:
        setup_tracing(
            otlp_endpoint=config.tracing.otlp_endpoint,
            enable_fastapi_instrumentation=config.tracing.instrument_fastapi,
            app=web_adapter.app,
        )

    logger.info(
        "Starting web server",
        host=config.server.host,
        port=config.server.port,
        simulator=config.simulator.enabled,
        environment=config.environment,
    )

    uvicorn.run(
        web_adapter.app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


@click.command()
@click.option("--length", default=32, show_default=True, help="Random bytes in the token")
def generate_token(length: int) -> None:
    """Generate a random shared secret."""
    token = secrets.token_urlsafe(length)

    click.echo("Generated token:")
    click.echo(f"Token: {token}")
    click.echo("\nEnvironment format:")
    click.echo(f"AGENT_ROUTER_TOKEN={token}")
    click.echo("\nYAML config format:")
    click.echo("server:")
    click.echo(f"  token: {token}")


@click.group()
@click.version_option(__version__, prog_name="agent-router")
def cli() -> None:
    """AgentHUD router CLI."""
    pass


cli.add_command(run_server, name="server")
cli.add_command(generate_token, name="generate-token")


if __name__ == "__main__":
    cli()
