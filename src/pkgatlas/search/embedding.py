"""Embedding generation for package text.

Uses fastembed (ONNX-based) to turn a canonical package description into a
unit-length float32 vector, so cosine similarity is a plain dot product.

Model: sentence-transformers/all-MiniLM-L6-v2 (384-dim) by default.

The model is loaded lazily on first use. Concurrent first calls share one
in-flight load task, so the model is never loaded twice in a process. A
failed load is kept: every later call re-raises the same error.

Batches are embedded one text at a time to bound peak memory. Model calls
run on a single worker thread owned by the generator: a call abandoned
after its timeout keeps that thread until it finishes, and the next call
queues behind it instead of running alongside.
"""

from __future__ import annotations

import asyncio
import os
import time
from concurrent.futures import ThreadPoolExecutor
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Protocol

import numpy as np
import structlog

from pkgatlas.catalog.store import PackageRecord
from pkgatlas.config.models import EmbeddingConfig, TimeoutsConfig
from pkgatlas.core.errors import EmbeddingError

log = structlog.get_logger()

_NORM_EPSILON = 1e-10


class TextEmbeddingModel(Protocol):
    """The slice of fastembed.TextEmbedding we depend on."""

    def embed(self, documents: list[str]) -> Iterable[Any]: ...


ModelFactory = Callable[[EmbeddingConfig], TextEmbeddingModel]


def _detect_providers() -> list[str]:
    """ONNX Runtime providers to request, GPU first when one is present."""
    try:
        import onnxruntime as ort  # type: ignore[import-not-found]
    except ImportError:
        return []

    if "CUDAExecutionProvider" in ort.get_available_providers():
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def load_fastembed_model(config: EmbeddingConfig) -> TextEmbeddingModel:
    """Load a fastembed TextEmbedding (blocking; downloads on first run)."""
    from fastembed import TextEmbedding  # type: ignore[import-not-found]

    kwargs: dict[str, Any] = {
        "model_name": config.model_name,
        "threads": config.threads or max(1, (os.cpu_count() or 4) // 2),
    }
    providers = _detect_providers()
    if providers:
        kwargs["providers"] = providers
    return TextEmbedding(**kwargs)  # type: ignore[no-any-return]


def build_package_text(record: PackageRecord, readme_chars: int = 500) -> str:
    """Canonical embedding input for a package.

    Labeled fields in a fixed order: name, description, language,
    categories, then a bounded readme prefix. Empty fields are omitted.
    """
    parts = [
        f"Package: {record.name}",
        f"Description: {record.description}" if record.description else "",
        f"Language: {record.language.value}",
        f"Categories: {', '.join(record.category_names)}" if record.categories else "",
        f"Details: {record.readme[:readme_chars]}" if record.readme else "",
    ]
    return "\n".join(p for p in parts if p)


def normalize(vector: Any) -> np.ndarray:
    """Scale to unit length as float32."""
    arr = np.asarray(vector, dtype=np.float32).reshape(-1)
    norm = float(np.linalg.norm(arr))
    if norm < _NORM_EPSILON:
        raise EmbeddingError.embed_failed("model returned a zero vector")
    return arr / norm


class EmbeddingGenerator:
    """Maps text to unit-normalized vectors with a lazily loaded model.

    Construct once per process and pass it to the components that need it.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        timeouts: TimeoutsConfig | None = None,
        *,
        model_factory: ModelFactory = load_fastembed_model,
    ) -> None:
        self._config = config or EmbeddingConfig()
        self._timeouts = timeouts or TimeoutsConfig()
        self._model_factory = model_factory
        self._model: TextEmbeddingModel | None = None
        self._load_task: asyncio.Task[TextEmbeddingModel] | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pkgatlas-embed")

    @property
    def model_name(self) -> str:
        return self._config.model_name

    @property
    def dimension(self) -> int:
        return self._config.dimension

    @property
    def readme_chars(self) -> int:
        return self._config.readme_chars

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def close(self) -> None:
        """Release the embedding thread. Queued calls are cancelled."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    async def ensure_loaded(self) -> None:
        """Load the model once; concurrent callers await the same load.

        Raises:
            EmbeddingError: model_load_failed, on this and every later call.
        """
        if self._model is not None:
            return
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load())
        # Shield so one cancelled caller does not abort the shared load
        await asyncio.shield(self._load_task)

    async def _load(self) -> TextEmbeddingModel:
        loop = asyncio.get_running_loop()
        start = time.monotonic()
        log.info("embedding.model_loading", model=self.model_name)
        try:
            async with asyncio.timeout(self._timeouts.model_load_sec):
                model = await loop.run_in_executor(None, self._model_factory, self._config)
        except TimeoutError as e:
            log.error("embedding.model_load_timeout", model=self.model_name)
            raise EmbeddingError.model_load_failed(
                self.model_name, f"timed out after {self._timeouts.model_load_sec}s"
            ) from e
        except ImportError as e:
            log.error("embedding.fastembed_not_installed", hint="pip install fastembed")
            raise EmbeddingError.model_load_failed(self.model_name, str(e)) from e
        except Exception as e:
            log.error("embedding.model_load_failed", model=self.model_name, exc_info=True)
            raise EmbeddingError.model_load_failed(self.model_name, str(e)) from e

        self._model = model
        log.info(
            "embedding.model_loaded",
            model=self.model_name,
            elapsed_s=round(time.monotonic() - start, 2),
        )
        return model

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> np.ndarray:
        """Embed one text. Deterministic for a fixed model and input."""
        await self.ensure_loaded()
        loop = asyncio.get_running_loop()
        try:
            async with asyncio.timeout(self._timeouts.embedding_sec):
                return await loop.run_in_executor(self._executor, self._embed_one, text)
        except TimeoutError as e:
            raise EmbeddingError.timeout(self._timeouts.embedding_sec) from e

    def _embed_one(self, text: str) -> np.ndarray:
        assert self._model is not None
        try:
            raw = next(iter(self._model.embed([text])))
        except Exception as e:
            raise EmbeddingError.embed_failed(str(e)) from e
        vector = normalize(raw)
        if vector.shape[0] != self.dimension:
            raise EmbeddingError.dimension_mismatch(self.dimension, int(vector.shape[0]))
        return vector

    async def embed_batch(
        self,
        texts: Sequence[str],
        *,
        skip_failures: bool = False,
    ) -> list[np.ndarray | None]:
        """Embed texts sequentially, preserving input order.

        With ``skip_failures`` an item that fails to embed yields None in its
        slot and the batch continues. Fatal errors (model load, dimension
        mismatch) always propagate.
        """
        if not texts:
            return []

        await self.ensure_loaded()
        total = len(texts)
        every = self._config.progress_every
        vectors: list[np.ndarray | None] = []

        for i, text in enumerate(texts):
            try:
                vectors.append(await self.embed(text))
            except EmbeddingError as e:
                if e.is_fatal or not skip_failures:
                    raise
                log.warning("embedding.item_failed", index=i, error=str(e))
                vectors.append(None)

            if (i + 1) % every == 0 or i == total - 1:
                log.info("embedding.batch_progress", done=i + 1, total=total)

        return vectors

    async def self_test(self) -> int:
        """Embed a probe string and return its dimension.

        Raises:
            EmbeddingError: if the model cannot load or the dimension is wrong.
        """
        vector = await self.embed("test")
        log.info("embedding.self_test_passed", dimension=int(vector.shape[0]))
        return int(vector.shape[0])

    def package_text(self, record: PackageRecord) -> str:
        return build_package_text(record, self.readme_chars)
