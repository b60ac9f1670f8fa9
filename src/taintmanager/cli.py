"""CLI for the node taint manager."""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path

import click
from kubernetes_asyncio.config import ConfigException
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.kubernetes import initialize_kubernetes
from safir.sentry import initialize_sentry, report_exception
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger, get_logger

from . import __version__
from .config import Config
from .constants import (
    APPLICATION_NAME,
    CONFIG_FILE_ENV_VAR,
    CONFIGURATION_PATH,
    ROOT_LOGGER,
)
from .exceptions import CacheSyncError, KubernetesCredentialsError
from .factory import Factory, ProcessContext

__all__ = ["help", "main", "main_with_sentry", "run"]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """Node taint manager command-line interface."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


@main.command()
@click.option(
    "--config-file",
    "-c",
    type=Path,
    default=None,
    help="Application configuration file",
)
@click.option(
    "--debug",
    "-d",
    is_flag=True,
    help="Enable debug logging",
)
@run_with_asyncio
async def run(*, config_file: Path | None, debug: bool) -> None:
    """Remove gating taints from nodes until interrupted."""
    config = _load_config(config_file, debug=debug)
    logger = get_logger(ROOT_LOGGER)
    slack_client = None
    if config.slack_webhook:
        slack_client = SlackWebhookClient(
            config.slack_webhook.get_secret_value(), APPLICATION_NAME, logger
        )

    try:
        await _run(config, slack_client, logger)
    except (CacheSyncError, KubernetesCredentialsError) as e:
        logger.critical("Unable to start node taint manager", error=str(e))
        await report_exception(e, slack_client)
        raise click.exceptions.Exit(1) from e
    except Exception as e:
        await report_exception(e, slack_client)
        raise


def _load_config(config_file: Path | None, *, debug: bool) -> Config:
    """Load the configuration, overriding it from CLI options.

    An explicitly requested configuration file must exist. Otherwise, the
    default configuration file is used if present, and if not, settings come
    only from the environment.
    """
    # Prefer config file from env var
    if env_config_path := os.getenv(CONFIG_FILE_ENV_VAR):
        config_file = Path(env_config_path)
    if config_file:
        config = Config.from_file(config_file)
    elif CONFIGURATION_PATH.exists():
        config = Config.from_file(CONFIGURATION_PATH)
    else:
        config = Config()
        config.configure_logging()

    if debug:
        config.debug = debug
        config.configure_logging()
    return config


async def _run(
    config: Config,
    slack_client: SlackWebhookClient | None,
    logger: BoundLogger,
) -> None:
    try:
        await initialize_kubernetes()
    except ConfigException as e:
        msg = f"Cannot load Kubernetes configuration: {e!s}"
        raise KubernetesCredentialsError(msg) from e

    context = ProcessContext.from_config(config, slack_client=slack_client)
    try:
        background = Factory(context, logger).create_background_task_manager()
        try:
            await background.start(config.sync_timeout)
            logger.info(
                "Node taint manager started",
                taint_key=config.taint_key,
                version=__version__,
            )
            await _wait_for_shutdown()
            logger.info("Shutting down")
        finally:
            await background.stop()
    finally:
        await context.aclose()


async def _wait_for_shutdown() -> None:
    """Wait until the process receives SIGINT or SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await stop.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main_with_sentry() -> None:
    """Call the main command group after initializing Sentry."""
    initialize_sentry(release=__version__)
    main()
