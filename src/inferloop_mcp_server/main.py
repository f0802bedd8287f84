"""
Main entry point for Inferloop MCP Server.

This module provides the command-line interface for the MCP server,
handling startup, configuration, and transport selection.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
import structlog
from pydantic import ValidationError

from . import __version__
from .config.settings import create_default_config, load_config
from .server import InferloopMCPServer
from .utils.logging import setup_logging


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set logging level",
)
@click.option(
    "--transport",
    type=click.Choice(["stdio", "http"], case_sensitive=False),
    default="stdio",
    show_default=True,
    help="Transport to serve MCP on",
)
@click.option("--host", help="Bind host for the HTTP transport")
@click.option("--port", type=click.IntRange(0, 65535), help="Bind port for the HTTP transport")
@click.version_option(version=__version__)
def serve(
    config: Optional[Path] = None,
    log_level: Optional[str] = None,
    transport: str = "stdio",
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> None:
    """
    Inferloop MCP Server - exposes the Inferloop Cloud Platform to MCP hosts.

    Serves synthetic data generation, job tracking, GATF validation and
    tool pipelines over stdio (default) or HTTP.
    """
    try:
        config_data = load_config(config_path=config)
    except (FileNotFoundError, ValueError, ValidationError) as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)

    if log_level:
        config_data.server.log_level = log_level.upper()

    setup_logging(config_data.server.log_level)
    logger = structlog.get_logger()

    logger.info(
        "Starting Inferloop MCP Server",
        version=config_data.version,
        config_file=str(config) if config else "default",
        log_level=config_data.server.log_level,
        transport=transport,
    )

    if not config_data.icp.api_key:
        logger.warning("ICP_API_KEY is not set; platform requests may be rejected")

    try:
        server = InferloopMCPServer(config_data)

        if transport.lower() == "http":
            asyncio.run(server.run_http(host=host, port=port))
        else:
            asyncio.run(server.run_stdio())

    except KeyboardInterrupt:
        logger.info("Server shutdown requested")
    except Exception as e:
        logger.error("Server startup failed", error=str(e), exc_info=True)
        sys.exit(1)


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to save configuration file",
)
def init(config: Optional[Path] = None) -> None:
    """Initialize a configuration file with default settings."""
    config_path = config or Path("config.json")

    if config_path.exists():
        click.echo(f"Configuration file already exists: {config_path}")
        if not click.confirm("Overwrite?"):
            return

    try:
        create_default_config(config_path)
    except OSError as e:
        click.echo(f"Failed to create configuration file: {e}", err=True)
        sys.exit(1)

    click.echo(f"Created configuration file: {config_path}")
    click.echo("\nNext steps:")
    click.echo("1. Set environment variables:")
    click.echo("   export ICP_API_KEY='your-api-key'")
    click.echo("2. Start the server:")
    click.echo(f"   inferloop-mcp-server serve --config {config_path}")


@click.group()
def cli() -> None:
    """Inferloop MCP Server CLI."""


cli.add_command(serve)
cli.add_command(init)


if __name__ == "__main__":
    cli()
