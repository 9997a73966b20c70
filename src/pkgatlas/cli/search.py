"""pkgatlas search command - one-shot query against the dispatcher."""

import asyncio
import json

import click
from rich.table import Table

from pkgatlas.cli.utils import get_console, load_cli_config
from pkgatlas.config.models import PkgAtlasConfig
from pkgatlas.core.errors import PkgAtlasError
from pkgatlas.search.models import SearchMode, SearchQuery, SearchResponse
from pkgatlas.server.context import AppContext


async def _run(config: PkgAtlasConfig, query: SearchQuery, mode: SearchMode) -> SearchResponse:
    context = AppContext.create(config)
    try:
        return await context.dispatcher.search(query, mode)
    finally:
        await context.close()


def _render(response: SearchResponse, mode: SearchMode) -> None:
    console = get_console()
    if not response.data:
        console.print("No results.", style="dim")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Package", style="cyan")
    table.add_column("Language")
    table.add_column("Stars", justify="right")
    if mode in (SearchMode.SEMANTIC, SearchMode.HYBRID):
        table.add_column("Score", justify="right")
    table.add_column("Description", overflow="ellipsis", max_width=60)

    for rank, result in enumerate(response.data, start=1):
        row = [str(rank), result.name, result.language.value, f"{result.stars:,}"]
        if mode in (SearchMode.SEMANTIC, SearchMode.HYBRID):
            row.append(f"{result.relevance:.3f}")
        row.append(result.description)
        table.add_row(*row)
    console.print(table)

    if response.pagination is not None:
        p = response.pagination
        console.print(f"page {p.page}/{p.total_pages} ({p.total} total)", style="dim")


@click.command()
@click.argument("query")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in SearchMode]),
    default=SearchMode.HYBRID.value,
    show_default=True,
    help="Search strategy",
)
@click.option("--language", default=None, help="PYTHON, NODEJS, RUST or all")
@click.option("--limit", type=int, default=None, help="Maximum results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def search_command(
    ctx: click.Context,
    query: str,
    mode: str,
    language: str | None,
    limit: int | None,
    as_json: bool,
) -> None:
    """Search the catalog for QUERY."""
    config = load_cli_config(ctx)
    params = {"q": query}
    if language is not None:
        params["language"] = language
    if limit is not None:
        params["limit"] = str(limit)

    search_mode = SearchMode(mode)
    try:
        search_query = SearchQuery.from_params(params)
        response = asyncio.run(_run(config, search_query, search_mode))
    except PkgAtlasError as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(json.dumps(response.to_json(), indent=2))
    else:
        _render(response, search_mode)
