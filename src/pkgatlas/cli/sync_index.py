"""pkgatlas sync-index command - rebuild the full-text index."""

import asyncio

import click

from pkgatlas.cli.utils import get_console, load_cli_config
from pkgatlas.config.models import PkgAtlasConfig
from pkgatlas.core.errors import PkgAtlasError
from pkgatlas.jobs.fulltext_sync import FullTextSyncStats, sync_fulltext
from pkgatlas.server.context import AppContext


async def _run(config: PkgAtlasConfig, wait: bool) -> FullTextSyncStats:
    context = AppContext.create(config)
    try:
        await context.store.create_all()
        return await sync_fulltext(context.store, context.fulltext, wait=wait)
    finally:
        await context.close()


@click.command()
@click.option("--wait", is_flag=True, help="Block until the index has applied every task")
@click.pass_context
def sync_index_command(ctx: click.Context, wait: bool) -> None:
    """Replace the full-text index contents with the current catalog."""
    config = load_cli_config(ctx)
    try:
        stats = asyncio.run(_run(config, wait))
    except PkgAtlasError as e:
        raise click.ClickException(str(e)) from e

    console = get_console()
    report = stats.report
    console.print(
        f"Queued [green]{report.queued}[/green] of {report.total} documents"
        + (f", [yellow]{report.skipped} skipped[/yellow]" if report.skipped else ""),
        highlight=False,
    )
    if not wait:
        console.print("Indexing continues in the background.", style="dim")
    docs = stats.index_stats.get("numberOfDocuments")
    if docs is not None:
        state = "indexing" if stats.index_stats.get("isIndexing") else "idle"
        console.print(f"Index '{config.fulltext.index_name}': {docs} documents ({state})")
