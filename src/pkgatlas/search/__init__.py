"""Search - keyword, semantic, hybrid and external full-text retrieval.

`SearchDispatcher` is the entry point; it selects the engine named by the
caller and normalizes the response shape.
"""

from pkgatlas.search.dispatcher import SearchDispatcher
from pkgatlas.search.embedding import EmbeddingGenerator, build_package_text
from pkgatlas.search.fulltext import FullTextDocument, FullTextIndex, SyncReport
from pkgatlas.search.fusion import HybridFusion
from pkgatlas.search.keyword import KeywordEngine
from pkgatlas.search.models import (
    Pagination,
    SearchMode,
    SearchQuery,
    SearchResponse,
    SearchResult,
    SortKey,
)
from pkgatlas.search.vector import VectorSearch, cosine_similarity

__all__ = [
    "SearchDispatcher",
    # Engines
    "EmbeddingGenerator",
    "FullTextIndex",
    "HybridFusion",
    "KeywordEngine",
    "VectorSearch",
    # Models
    "FullTextDocument",
    "Pagination",
    "SearchMode",
    "SearchQuery",
    "SearchResponse",
    "SearchResult",
    "SortKey",
    "SyncReport",
    # Helpers
    "build_package_text",
    "cosine_similarity",
]
