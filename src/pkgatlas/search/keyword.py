"""Keyword (substring) search directly against the record store.

This is the fallback/alternative to the external full-text index: no typo
tolerance, no tokenisation, just case-insensitive substring matching plus
structured filters and a store-level sort.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from pkgatlas.catalog.models import Language
from pkgatlas.catalog.store import OrderBy, PackageRecord, PackageStore
from pkgatlas.search.models import SearchQuery, SearchResult, SortKey

log = structlog.get_logger()

_STORE_ORDER: dict[SortKey, OrderBy] = {
    SortKey.RELEVANCE: "popularity",
    SortKey.STARS: "stars",
    SortKey.DOWNLOADS: "downloads",
    SortKey.RECENT: "recent",
    SortKey.NAME: "name",
}


def rerank_by_relevance(records: Sequence[PackageRecord], term: str) -> list[PackageRecord]:
    """Local tie-break ladder applied on top of the store ordering.

    Name contains the term, then slug contains the term, then popularity.
    Matching is case-insensitive; the sort is stable.
    """
    needle = term.lower()
    return sorted(
        records,
        key=lambda r: (
            needle not in r.name.lower(),
            needle not in r.slug.lower(),
            -r.popularity_score,
        ),
    )


class KeywordEngine:
    """Substring queries over name, slug, description and readme."""

    def __init__(self, store: PackageStore) -> None:
        self._store = store

    async def search(self, query: SearchQuery) -> tuple[list[SearchResult], int]:
        """One page of keyword results and the total match count.

        No query text and no language filter means nothing to search for:
        the result is empty, never "every package".
        """
        if query.q is None and query.language is None:
            return [], 0

        records, total = await self._store.keyword_search(
            query.q,
            language=query.language,
            min_stars=query.min_stars,
            license=query.license,
            order_by=_STORE_ORDER[query.sort_by],
            limit=query.effective_limit,
            offset=query.offset,
        )
        if query.q and query.sort_by is SortKey.RELEVANCE:
            records = rerank_by_relevance(records, query.q)

        log.debug("keyword.search_completed", query=query.q, returned=len(records), total=total)
        return [SearchResult.from_record(r) for r in records], total

    async def match(
        self,
        text: str,
        limit: int,
        language: Language | None = None,
    ) -> list[SearchResult]:
        """Name/description substring matches, most starred first (hybrid leg)."""
        records, _ = await self._store.keyword_search(
            text,
            fields=("name", "description"),
            language=language,
            order_by="stars",
            limit=limit,
        )
        return [SearchResult.from_record(r, source="keyword") for r in records]
