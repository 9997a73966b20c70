"""pkgatlas embed command - generate package embeddings."""

import asyncio

import click

from pkgatlas.cli.utils import get_console, load_cli_config
from pkgatlas.config.models import PkgAtlasConfig
from pkgatlas.core.errors import PkgAtlasError
from pkgatlas.jobs.embeddings import EmbeddingJobStats, generate_embeddings
from pkgatlas.server.context import AppContext


async def _run(config: PkgAtlasConfig, missing_only: bool) -> EmbeddingJobStats:
    context = AppContext.create(config)
    try:
        await context.store.create_all()
        return await generate_embeddings(context.store, context.generator, missing_only=missing_only)
    finally:
        await context.close()


@click.command()
@click.option("--missing-only", is_flag=True, help="Only embed packages without a vector")
@click.pass_context
def embed_command(ctx: click.Context, missing_only: bool) -> None:
    """Generate embeddings for catalog packages.

    Exits non-zero if the model cannot be loaded or produces vectors of
    the wrong dimension. Individual packages that fail are skipped.
    """
    config = load_cli_config(ctx)
    try:
        stats = asyncio.run(_run(config, missing_only))
    except PkgAtlasError as e:
        raise click.ClickException(str(e)) from e

    console = get_console()
    console.print(
        f"Embedded [green]{stats.embedded}[/green] of {stats.selected} packages"
        + (f", [red]{stats.failed} failed[/red]" if stats.failed else "")
        + f" ({stats.elapsed_s:.1f}s)",
        highlight=False,
    )
    console.print(
        f"Catalog coverage: {stats.catalog_embedded}/{stats.catalog_total} "
        f"({stats.coverage:.0%})",
        highlight=False,
    )
