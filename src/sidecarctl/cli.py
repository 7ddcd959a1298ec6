"""Root CLI command for sidecarctl.

Resolves configuration, launches the enabled diagnostic servers and blocks
until SIGINT, SIGTERM or SIGQUIT triggers one coordinated shutdown.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import Any, TypeVar

import click
import structlog
from click.core import ParameterSource

from sidecarctl import __version__
from sidecarctl.config.logging import configure_logging
from sidecarctl.config.options import CONFIG_OPTION, OPTIONS, Option
from sidecarctl.config.resolver import load_config
from sidecarctl.diagnostics.servers import build_servers
from sidecarctl.errors import ConfigError, ShutdownError
from sidecarctl.services.lifecycle import LifecycleCoordinator
from sidecarctl.services.shutdown import ShutdownToken, install_signal_handlers

logger = structlog.get_logger(__name__)

SHUTDOWN_FAILURE_EXIT_CODE = 3

F = TypeVar("F", bound=Callable[..., Any])


def _option_decorator(option: Option) -> Callable[[F], F]:
    if option.is_bool:
        return click.option(
            f"{option.flag}/--no-{option.key}",
            option.param_name,
            default=option.default,
            show_default=True,
            help=option.help,
        )
    decls = [option.short] if option.short else []
    return click.option(
        *decls,
        option.flag,
        option.param_name,
        default=option.default,
        type=click.IntRange(0, 65535) if option.type is not str else str,
        show_default=True,
        help=option.help,
    )


def config_options(func: F) -> F:
    """Attach ``-c/--config`` and one flag per declared option."""
    for option in reversed((CONFIG_OPTION, *OPTIONS)):
        func = _option_decorator(option)(func)
    return func


def explicit_flags(ctx: click.Context, params: dict[str, Any]) -> dict[str, Any]:
    """Flags the user passed on the command line, keyed by dotted option key.

    Uses click's recorded parameter source, so a flag passed with a value
    equal to its default still counts as explicit.
    """
    explicit: dict[str, Any] = {}
    for option in (CONFIG_OPTION, *OPTIONS):
        if ctx.get_parameter_source(option.param_name) is ParameterSource.COMMANDLINE:
            explicit[option.key] = params[option.param_name]
    return explicit


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="sidecarctl")
@click.option("-v", "--verbose", is_flag=True, help="Debug-level log output.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@config_options
@click.pass_context
def cli(ctx: click.Context, verbose: bool, log_json: bool, **params: Any) -> None:
    """sidecarctl — diagnostic and metrics listeners for a Wireguard sidecar."""
    configure_logging(verbose=verbose, log_json=log_json)
    logger.info("sidecarctl", version=__version__)

    try:
        config = load_config(flags=explicit_flags(ctx, params), environ=os.environ)
    except ConfigError as exc:
        raise click.ClickException(f"failed to load config: {exc}") from exc

    if config.tracing.enabled:
        logger.info("tracing configured", otlp_endpoint=config.tracing.otlp_endpoint)

    token = ShutdownToken()
    coordinator = LifecycleCoordinator(token)
    for server in build_servers(config):
        logger.info("starting server", server=server.name)
        coordinator.register(server)
    install_signal_handlers(token)
    coordinator.run_all()

    try:
        coordinator.run_until_shutdown()
    except ShutdownError as exc:
        logger.error("error shutting down", error=str(exc))
        ctx.exit(SHUTDOWN_FAILURE_EXIT_CODE)
