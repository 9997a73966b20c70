"""Single entry point for every search mode.

The caller names the mode. There is no fallback between modes: if the
full-text service is down an external-index request fails, it is not
quietly answered from the keyword engine. Errors from the engines
propagate unchanged so the HTTP layer can classify them.
"""

from __future__ import annotations

import time

import structlog

from pkgatlas.config.models import SearchConfig
from pkgatlas.core.errors import QueryError
from pkgatlas.search.fulltext import FullTextIndex, build_filter, build_sort, hit_to_result
from pkgatlas.search.fusion import HybridFusion
from pkgatlas.search.keyword import KeywordEngine
from pkgatlas.search.models import Pagination, SearchMode, SearchQuery, SearchResponse
from pkgatlas.search.vector import VectorSearch

log = structlog.get_logger()


class SearchDispatcher:
    """Routes a SearchQuery to one engine and normalizes the response."""

    def __init__(
        self,
        keyword: KeywordEngine,
        vector: VectorSearch,
        fusion: HybridFusion,
        fulltext: FullTextIndex,
        config: SearchConfig | None = None,
    ) -> None:
        self._keyword = keyword
        self._vector = vector
        self._fusion = fusion
        self._fulltext = fulltext
        self._config = config or SearchConfig()

    @property
    def fulltext(self) -> FullTextIndex:
        return self._fulltext

    def default_limit(self, mode: SearchMode) -> int:
        if mode is SearchMode.KEYWORD:
            return self._config.keyword_default_limit
        if mode is SearchMode.EXTERNAL_INDEX:
            return self._config.external_default_limit
        return self._config.semantic_default_limit

    async def search(self, query: SearchQuery, mode: SearchMode) -> SearchResponse:
        query = query.with_limit(self.default_limit(mode))
        start = time.monotonic()

        if mode is SearchMode.KEYWORD:
            response = await self._keyword_search(query)
        elif mode is SearchMode.SEMANTIC:
            response = await self._semantic_search(query)
        elif mode is SearchMode.HYBRID:
            response = await self._hybrid_search(query)
        else:
            response = await self._external_search(query)

        log.info(
            "search.completed",
            mode=mode.value,
            query=query.q,
            returned=len(response.data),
            elapsed_ms=round((time.monotonic() - start) * 1000, 1),
        )
        return response

    async def _keyword_search(self, query: SearchQuery) -> SearchResponse:
        if query.q is None and query.language is None:
            return SearchResponse(
                data=[],
                pagination=Pagination(total=0, page=1, limit=query.effective_limit, total_pages=0),
            )
        results, total = await self._keyword.search(query)
        return SearchResponse(
            data=results,
            pagination=Pagination.build(total, query.page, query.effective_limit),
        )

    async def _semantic_search(self, query: SearchQuery) -> SearchResponse:
        text = _require_text(query)
        results = await self._vector.search_text(
            text,
            query.effective_limit,
            self._config.semantic_min_similarity,
            query.language,
        )
        return SearchResponse(
            data=results,
            meta={"query": text, "count": len(results), "searchType": SearchMode.SEMANTIC.value},
        )

    async def _hybrid_search(self, query: SearchQuery) -> SearchResponse:
        text = _require_text(query)
        results = await self._fusion.fuse(text, query.effective_limit, query.language)
        return SearchResponse(
            data=results,
            meta={"query": text, "count": len(results), "searchType": SearchMode.HYBRID.value},
        )

    async def _external_search(self, query: SearchQuery) -> SearchResponse:
        text = _require_text(query)
        hits = await self._fulltext.query(
            text,
            filter=build_filter(query.language, query.min_stars, query.license),
            sort=build_sort(query.sort_by),
            limit=query.effective_limit,
            offset=query.offset,
        )
        return SearchResponse(
            data=[hit_to_result(hit) for hit in hits.hits],
            pagination=Pagination.build(hits.estimated_total_hits, query.page, query.effective_limit),
            meta={"processingTimeMs": hits.processing_time_ms, "query": hits.query},
        )


def _require_text(query: SearchQuery) -> str:
    if query.q is None:
        raise QueryError.missing_query()
    return query.q
