"""pkgatlas serve command - run the HTTP search service."""

import asyncio

import click

from pkgatlas.cli.utils import get_console, load_cli_config
from pkgatlas.server.runner import run_server


@click.command()
@click.option("--host", default=None, help="Bind address (overrides config)")
@click.option("--port", type=int, default=None, help="Port (overrides config)")
@click.pass_context
def serve_command(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Serve the search API until interrupted."""
    config = load_cli_config(ctx)
    overrides = {k: v for k, v in (("host", host), ("port", port)) if v is not None}
    if overrides:
        config = config.model_copy(update={"server": config.server.model_copy(update=overrides)})

    console = get_console()
    console.print(
        f"[bold cyan]pkgatlas[/bold cyan] listening on "
        f"http://{config.server.host}:{config.server.port}",
        highlight=False,
    )
    asyncio.run(run_server(config))
