"""
Main entry point for the webhook receiver.

Provides the command-line interface for serving the webhook endpoint,
draining the dead-letter queue and creating a configuration file.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
import structlog
from aiohttp import web

from .config.settings import Config, ConfigurationError, load_config
from .server import WebhookReceiverServer
from .utils.logging import setup_logging

logger = structlog.get_logger()


def _bootstrap(config_path: Optional[Path], log_level: Optional[str]) -> Config:
    config_data = load_config(config_path=config_path)
    if log_level:
        config_data.server.log_level = log_level.upper()
    setup_logging(config_data.server.log_level)
    return config_data


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set logging level",
)
@click.option("--host", help="Bind address (overrides configuration)")
@click.option("--port", type=int, help="Bind port (overrides configuration)")
def serve(
    config: Optional[Path] = None,
    log_level: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
) -> None:
    """Serve the webhook endpoint over HTTP."""
    try:
        config_data = _bootstrap(config, log_level)
        server = WebhookReceiverServer(config_data)
    except ConfigurationError as e:
        logger.error("Configuration error", error=e.message, missing=e.missing)
        sys.exit(1)
    except Exception as e:
        logger.error("Server startup failed", error=str(e), exc_info=True)
        sys.exit(1)

    bind_host = host or config_data.server.host
    bind_port = port or config_data.server.port
    logger.info(
        "Starting webhook receiver",
        version=config_data.version,
        environment=config_data.environment,
        host=bind_host,
        port=bind_port,
    )
    web.run_app(server.create_app(), host=bind_host, port=bind_port, print=None)


@click.command(name="drain-dlq")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set logging level",
)
@click.option("--once", is_flag=True, help="Process a single batch and exit")
@click.option("--max-messages", default=10, show_default=True, help="Entries per receive call")
@click.option("--wait-seconds", default=20, show_default=True, help="Long-poll wait time")
def drain_dlq(
    config: Optional[Path] = None,
    log_level: Optional[str] = None,
    once: bool = False,
    max_messages: int = 10,
    wait_seconds: int = 20,
) -> None:
    """Process failed deliveries from the dead-letter queue."""
    try:
        config_data = _bootstrap(config, log_level)
        server = WebhookReceiverServer(config_data)
    except ConfigurationError as e:
        logger.error("Configuration error", error=e.message, missing=e.missing)
        sys.exit(1)

    async def run() -> None:
        try:
            batch = await server.drain_dlq(
                once=once, max_messages=max_messages, wait_seconds=wait_seconds
            )
            click.echo(json.dumps(batch.summary))
        finally:
            await server.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Dead-letter drain stopped")
    except ConfigurationError as e:
        logger.error("Configuration error", error=e.message, missing=e.missing)
        sys.exit(1)


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    help="Path to save configuration file",
)
def init_config(config: Optional[Path] = None) -> None:
    """Initialize a configuration file with default settings."""
    from .config.settings import create_default_config

    config_path = config or Path("config.json")

    if config_path.exists():
        click.echo(f"Configuration file already exists: {config_path}")
        if not click.confirm("Overwrite?"):
            return

    try:
        create_default_config(config_path)
        click.echo(f"Created configuration file: {config_path}")
        click.echo("\nNext steps:")
        click.echo("1. Set environment variables:")
        click.echo("   export AWS_REGION='ap-southeast-3'")
        click.echo("   export MONGODB_URI_PARAMETER='/webhook/mongodb-uri'")
        click.echo("   export SNS_TOPIC_ARN='arn:aws:sns:...'")
        click.echo("2. Start the receiver:")
        click.echo(f"   webhook-receiver serve --config {config_path}")
    except Exception as e:
        click.echo(f"Failed to create configuration file: {e}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(package_name="webhook-receiver")
def cli() -> None:
    """Webhook receiver CLI."""
    pass


cli.add_command(serve, name="serve")
cli.add_command(drain_dlq, name="drain-dlq")
cli.add_command(init_config, name="init")


if __name__ == "__main__":
    cli()
