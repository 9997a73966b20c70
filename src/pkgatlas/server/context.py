"""Long-lived service objects shared by every request."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from pkgatlas.catalog.db import Database
from pkgatlas.catalog.store import PackageStore
from pkgatlas.config.models import PkgAtlasConfig
from pkgatlas.search.dispatcher import SearchDispatcher
from pkgatlas.search.embedding import EmbeddingGenerator, ModelFactory, load_fastembed_model
from pkgatlas.search.fulltext import FullTextIndex
from pkgatlas.search.fusion import HybridFusion
from pkgatlas.search.keyword import KeywordEngine
from pkgatlas.search.vector import VectorSearch

log = structlog.get_logger()


@dataclass
class AppContext:
    """Wiring for one process: one store, one generator, one index client.

    The generator holds the lazily loaded model, so building a second
    context in the same process would load the model twice.
    """

    config: PkgAtlasConfig
    database: Database
    store: PackageStore
    generator: EmbeddingGenerator
    fulltext: FullTextIndex
    dispatcher: SearchDispatcher

    @classmethod
    def create(
        cls,
        config: PkgAtlasConfig,
        *,
        database: Database | None = None,
        fulltext: FullTextIndex | None = None,
        model_factory: ModelFactory = load_fastembed_model,
    ) -> AppContext:
        database = database or Database(
            Path(config.database.path), busy_timeout_ms=config.database.busy_timeout_ms
        )
        store = PackageStore(database)
        generator = EmbeddingGenerator(config.embedding, config.timeouts, model_factory=model_factory)
        fulltext = fulltext or FullTextIndex(config.fulltext, config.timeouts)

        keyword = KeywordEngine(store)
        vector = VectorSearch(store, generator)
        fusion = HybridFusion(vector, keyword, config.search)
        dispatcher = SearchDispatcher(keyword, vector, fusion, fulltext, config.search)

        return cls(
            config=config,
            database=database,
            store=store,
            generator=generator,
            fulltext=fulltext,
            dispatcher=dispatcher,
        )

    async def close(self) -> None:
        await self.fulltext.aclose()
        self.generator.close()
        self.database.dispose()
        log.debug("context.closed")
