"""CLI for the Morgen calendar adapter: run the stdio MCP server or check connectivity."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from morgen_mcp import __version__
from morgen_mcp.config import AdapterConfig, ConfigError, load_config
from morgen_mcp.context import AdapterContext
from morgen_mcp.core.logging import configure_logging
from morgen_mcp.core.telemetry import init_telemetry
from morgen_mcp.credentials import CredentialError
from morgen_mcp.errors import MorgenError
from morgen_mcp.server import SERVER_NAME, build_server, describe_error

logger = logging.getLogger(__name__)

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to morgen-mcp.toml (defaults to ./morgen-mcp.toml when present)",
)


def _load(config_path: Path | None) -> AdapterConfig:
    try:
        return load_config(config_path)
    except (ConfigError, CredentialError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Morgen calendar adapter: calendar tools for AI assistants over MCP."""


@cli.command()
@_config_option
@click.option("--log-level", default=None, help="Override the configured log level")
def serve(config_path: Path | None, log_level: str | None) -> None:
    """Run the MCP server on stdio."""
    config = _load(config_path)
    configure_logging(
        level=log_level or config.logging.level,
        fmt=config.logging.format,
        log_root=config.logging.log_root,
    )
    init_telemetry()
    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


async def _serve(config: AdapterConfig) -> None:
    async with AdapterContext(config) as context:
        server = build_server(context)
        logger.info("Starting %s MCP server on stdio", SERVER_NAME)
        await server.run_async(transport="stdio")
    logger.info("%s MCP server stopped", SERVER_NAME)


@cli.command()
@_config_option
def check(config_path: Path | None) -> None:
    """Verify the API key by listing connected accounts and calendars."""
    config = _load(config_path)
    configure_logging(level="WARNING", fmt=config.logging.format)
    try:
        accounts, calendars = asyncio.run(_check(config))
    except MorgenError as exc:
        click.echo(f"Check failed: {describe_error(exc)}", err=True)
        sys.exit(1)

    click.echo(f"Connected accounts: {len(accounts)}")
    for account in accounts:
        provider = account.provider_name or "unknown provider"
        click.echo(f"  - {account.email or account.id} ({provider})")
    click.echo(f"Calendars: {len(calendars)}")
    if not accounts:
        click.echo("No accounts connected. Connect calendars at https://platform.morgen.so")
        sys.exit(1)


async def _check(config: AdapterConfig) -> tuple[list, list]:
    async with AdapterContext(config) as context:
        accounts = await context.client.list_accounts()
        calendars = await context.client.list_calendars()
    return accounts, calendars
