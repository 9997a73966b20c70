"""pkgatlas CLI - pkgatlas command."""

from pathlib import Path

import click

from pkgatlas import __version__
from pkgatlas.cli.embed import embed_command
from pkgatlas.cli.search import search_command
from pkgatlas.cli.serve import serve_command
from pkgatlas.cli.sync_index import sync_index_command
from pkgatlas.core.logging import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="pkgatlas")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file (default: ./pkgatlas.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """pkgatlas - package discovery search service."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path
    configure_logging(level="DEBUG" if verbose else "INFO")


cli.add_command(serve_command, name="serve")
cli.add_command(embed_command, name="embed")
cli.add_command(sync_index_command, name="sync-index")
cli.add_command(search_command, name="search")


if __name__ == "__main__":
    cli()
