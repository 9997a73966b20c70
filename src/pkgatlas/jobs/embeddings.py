"""Batch embedding generation over the catalog."""

from __future__ import annotations

import time
from dataclasses import dataclass

import structlog

from pkgatlas.catalog.store import PackageStore
from pkgatlas.core.errors import StoreError
from pkgatlas.search.embedding import EmbeddingGenerator

log = structlog.get_logger()


@dataclass
class EmbeddingJobStats:
    """Counters for one embedding run."""

    selected: int = 0
    embedded: int = 0
    failed: int = 0
    catalog_total: int = 0
    catalog_embedded: int = 0
    elapsed_s: float = 0.0

    @property
    def coverage(self) -> float:
        if not self.catalog_total:
            return 0.0
        return self.catalog_embedded / self.catalog_total


async def generate_embeddings(
    store: PackageStore,
    generator: EmbeddingGenerator,
    *,
    missing_only: bool = False,
) -> EmbeddingJobStats:
    """Embed packages and store the vectors.

    The model self-test runs first; a model that cannot load or produces the
    wrong dimension aborts the job before anything is written. After that,
    a package that fails to embed or save is logged and skipped.

    Args:
        store: Catalog to read packages from and write vectors to.
        generator: Shared embedding generator.
        missing_only: Only process packages without a stored vector.

    Raises:
        EmbeddingError: model load failure or dimension mismatch.
    """
    start = time.monotonic()
    stats = EmbeddingJobStats()

    await generator.self_test()

    records = await store.list_packages(missing_embedding_only=missing_only)
    stats.selected = len(records)
    log.info("embedding.job_started", selected=stats.selected, missing_only=missing_only)

    if records:
        texts = [generator.package_text(r) for r in records]
        vectors = await generator.embed_batch(texts, skip_failures=True)

        for record, vector in zip(records, vectors, strict=True):
            if vector is None:
                stats.failed += 1
                continue
            try:
                await store.save_embedding(record.id, vector, generator.model_name)
            except StoreError as e:
                stats.failed += 1
                log.warning("embedding.save_failed", slug=record.slug, error=str(e))
                continue
            stats.embedded += 1

    stats.catalog_total = await store.count_packages()
    stats.catalog_embedded = await store.count_embedded(generator.model_name)
    stats.elapsed_s = round(time.monotonic() - start, 2)

    log.info(
        "embedding.job_completed",
        embedded=stats.embedded,
        failed=stats.failed,
        catalog_embedded=stats.catalog_embedded,
        catalog_total=stats.catalog_total,
        elapsed_s=stats.elapsed_s,
    )
    return stats
