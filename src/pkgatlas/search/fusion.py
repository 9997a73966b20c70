"""Hybrid fusion of semantic and keyword results.

Semantic search gets ``ceil(limit * semantic_share)`` slots with a looser
similarity floor, keyword search gets ``ceil(limit * keyword_share)``.
Keyword hits have no natural score, so they are given a fixed mid-tier
weight: strong semantic matches outrank them, weak ones fall below them,
and literal name matches the embedding missed still surface.

Both legs run concurrently. If either leg fails the whole fusion fails;
a half-computed hybrid response is never returned.
"""

from __future__ import annotations

import asyncio
import math

import structlog

from pkgatlas.catalog.models import Language
from pkgatlas.config.models import SearchConfig
from pkgatlas.search.keyword import KeywordEngine
from pkgatlas.search.models import SearchResult
from pkgatlas.search.vector import VectorSearch

log = structlog.get_logger()


def _quota(limit: int, share: float) -> int:
    # round() first so float noise like 7.000000000000001 does not ceil to 8
    return max(1, math.ceil(round(limit * share, 9)))


def _first_leaf(group: BaseExceptionGroup) -> BaseException:
    exc: BaseException = group
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]
    return exc


def merge_results(
    semantic: list[SearchResult],
    keyword: list[SearchResult],
    limit: int,
    keyword_weight: float,
) -> list[SearchResult]:
    """Deduplicate by package id, order by relevance, truncate to ``limit``.

    Semantic results are inserted first, so on equal relevance a semantic
    hit stays ahead of a keyword hit.
    """
    merged: dict[int, SearchResult] = {}
    for result in semantic:
        merged.setdefault(result.id, result)
    for result in keyword:
        if result.id not in merged:
            merged[result.id] = result.model_copy(
                update={"similarity": keyword_weight, "source": "keyword"}
            )
    ranked = sorted(merged.values(), key=lambda r: -r.relevance)
    return ranked[:limit]


class HybridFusion:
    """Merges vector and keyword rankings into one list."""

    def __init__(
        self,
        vector: VectorSearch,
        keyword: KeywordEngine,
        config: SearchConfig | None = None,
    ) -> None:
        self._vector = vector
        self._keyword = keyword
        self._config = config or SearchConfig()

    def quotas(self, limit: int) -> tuple[int, int]:
        """(semantic, keyword) fetch sizes; both round up, so may over-fetch."""
        return (
            _quota(limit, self._config.hybrid_semantic_share),
            _quota(limit, self._config.hybrid_keyword_share),
        )

    async def fuse(
        self,
        query: str,
        limit: int,
        language: Language | None = None,
    ) -> list[SearchResult]:
        semantic_k, keyword_k = self.quotas(limit)
        try:
            async with asyncio.TaskGroup() as tg:
                semantic_task = tg.create_task(
                    self._vector.search_text(
                        query, semantic_k, self._config.hybrid_min_similarity, language
                    )
                )
                keyword_task = tg.create_task(self._keyword.match(query, keyword_k, language))
        except BaseExceptionGroup as eg:
            leaf = _first_leaf(eg)
            log.warning("hybrid.leg_failed", query=query, error=str(leaf))
            raise leaf from None

        semantic = semantic_task.result()
        keyword = keyword_task.result()
        fused = merge_results(semantic, keyword, limit, self._config.hybrid_keyword_weight)
        log.debug(
            "hybrid.fused",
            query=query,
            semantic=len(semantic),
            keyword=len(keyword),
            returned=len(fused),
        )
        return fused
