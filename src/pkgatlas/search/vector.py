"""Vector similarity search over stored package embeddings.

A full scan: every embedded candidate is scored with numpy in one matrix
product. There is no approximate nearest-neighbour index, so recall is
exact and cost grows linearly with the catalog. That is fine for catalogs
in the low thousands and is the known scaling limit of this component.

Only vectors produced by the generator's model and with its dimension are
compared; packages without an embedding are never candidates.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

import numpy as np
import structlog

from pkgatlas.catalog.models import Language
from pkgatlas.catalog.store import PackageRecord, PackageStore
from pkgatlas.search.embedding import EmbeddingGenerator
from pkgatlas.search.models import SearchResult

log = structlog.get_logger()

_NORM_EPSILON = 1e-10


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine of the angle between two vectors, in [-1, 1]. Zero vectors score 0."""
    va = np.asarray(a, dtype=np.float32)
    vb = np.asarray(b, dtype=np.float32)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have the same length ({va.shape[0]} != {vb.shape[0]})")
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na < _NORM_EPSILON or nb < _NORM_EPSILON:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


def score_matrix(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against every row of ``matrix``."""
    q = query.astype(np.float32) / max(float(np.linalg.norm(query)), _NORM_EPSILON)
    norms = np.maximum(np.linalg.norm(matrix, axis=1), _NORM_EPSILON)
    return (matrix.astype(np.float32) @ q) / norms


class VectorSearch:
    """k-nearest packages by cosine similarity."""

    def __init__(self, store: PackageStore, generator: EmbeddingGenerator) -> None:
        self._store = store
        self._generator = generator

    async def search(
        self,
        query_vector: Sequence[float] | np.ndarray,
        k: int,
        min_similarity: float = 0.0,
        language: Language | None = None,
    ) -> list[SearchResult]:
        """Top ``k`` packages by similarity, then drop those below ``min_similarity``.

        Ordering is similarity descending; equal scores keep store order
        (ascending package id). Similarities are clamped to [0, 1].
        """
        if k <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        candidates = await self._store.embedded_candidates(
            language=language, model_name=self._generator.model_name
        )
        usable = self._comparable(candidates, query.shape[0])
        if not usable:
            return []

        matrix = np.vstack([c.embedding for c in usable])
        scores = np.clip(score_matrix(query, matrix), 0.0, 1.0)
        top = np.argsort(-scores, kind="stable")[:k]

        kept = [int(i) for i in top if scores[i] >= min_similarity]
        # Candidates are loaded without categories; resolve them for the hits only
        categories = await self._store.categories_for([usable[i].id for i in kept])
        results = [
            SearchResult.from_record(
                replace(usable[i], categories=categories.get(usable[i].id, ())),
                similarity=float(scores[i]),
                source="semantic",
            )
            for i in kept
        ]
        log.debug(
            "vector.search_completed",
            candidates=len(usable),
            k=k,
            returned=len(results),
            min_similarity=min_similarity,
        )
        return results

    async def search_text(
        self,
        text: str,
        k: int,
        min_similarity: float = 0.0,
        language: Language | None = None,
    ) -> list[SearchResult]:
        """Embed ``text`` with the shared generator, then search."""
        vector = await self._generator.embed(text)
        return await self.search(vector, k, min_similarity, language)

    @staticmethod
    def _comparable(candidates: list[PackageRecord], dimension: int) -> list[PackageRecord]:
        usable = [
            c for c in candidates if c.embedding is not None and c.embedding.shape[0] == dimension
        ]
        skipped = len(candidates) - len(usable)
        if skipped:
            log.warning("vector.dimension_mismatch_skipped", skipped=skipped, dimension=dimension)
        return usable
