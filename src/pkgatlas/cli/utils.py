"""CLI utilities."""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from pkgatlas.config.loader import load_config
from pkgatlas.config.models import PkgAtlasConfig
from pkgatlas.core.errors import ConfigError
from pkgatlas.core.logging import configure_logging

_console: Console | None = None


def get_console() -> Console:
    """Shared rich console writing to stdout."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def load_cli_config(ctx: click.Context) -> PkgAtlasConfig:
    """Load config for a command and reconfigure logging from it.

    Uses the ``--config`` path and ``--verbose`` flag stored on the group
    context. ``--verbose`` wins over the configured log level.

    Raises:
        click.ClickException: If the configuration cannot be loaded.
    """
    obj = ctx.find_root().obj or {}
    config_path: Path | None = obj.get("config_path")
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    logging_config = config.logging
    if obj.get("verbose"):
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    configure_logging(config=logging_config)
    return config
