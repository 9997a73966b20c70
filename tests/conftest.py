"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages,
and provides a seeded catalog plus a deterministic embedding model so no
test ever downloads a model.
"""

import asyncio
import hashlib
import json
import math
import re
import sys
from collections.abc import Callable, Generator, Iterable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import numpy as np
import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local pkgatlas package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

from pkgatlas.catalog.db import Database  # noqa: E402
from pkgatlas.catalog.models import Language  # noqa: E402
from pkgatlas.catalog.store import NewPackage, PackageStore  # noqa: E402
from pkgatlas.config.models import EmbeddingConfig, FullTextConfig, TimeoutsConfig  # noqa: E402
from pkgatlas.search.embedding import EmbeddingGenerator  # noqa: E402
from pkgatlas.search.fulltext import FullTextIndex  # noqa: E402

DIM = 384
_TOKEN = re.compile(r"[a-z0-9]+")


def _token_slot(token: str) -> int:
    return int(hashlib.md5(token.encode()).hexdigest(), 16) % DIM


class FakeEmbeddingModel:
    """Hashed bag-of-words embedder with the fastembed ``embed`` shape.

    Vectors are non-negative and deterministic. Texts listed in
    ``overrides`` map to a fixed vector; texts containing any ``fail_on``
    marker raise, to exercise per-item failure handling.
    """

    def __init__(
        self,
        overrides: dict[str, np.ndarray] | None = None,
        fail_on: Iterable[str] = (),
        dimension: int = DIM,
    ) -> None:
        self.overrides = dict(overrides or {})
        self.fail_on = tuple(fail_on)
        self.dimension = dimension
        self.calls: list[str] = []

    def _vector(self, text: str) -> np.ndarray:
        if text in self.overrides:
            return np.asarray(self.overrides[text], dtype=np.float32)
        vec = np.zeros(self.dimension, dtype=np.float32)
        for token in _TOKEN.findall(text.lower()):
            vec[_token_slot(token) % self.dimension] += 1.0
        return vec

    def embed(self, documents: list[str]) -> Iterator[np.ndarray]:
        for doc in documents:
            self.calls.append(doc)
            if any(marker in doc for marker in self.fail_on):
                raise RuntimeError(f"cannot embed {doc[:20]!r}")
            yield self._vector(doc)


class CountingFactory:
    """Model factory that records how many times a model was loaded."""

    def __init__(self, model: Any) -> None:
        self.model = model
        self.calls = 0

    def __call__(self, config: EmbeddingConfig) -> Any:
        _ = config  # unused
        self.calls += 1
        return self.model


def vector_at(similarity: float, axis: int, dimension: int = DIM) -> np.ndarray:
    """Unit vector whose cosine with the first basis vector is ``similarity``.

    ``axis`` (>= 1) picks the orthogonal component, so vectors built with
    different axes differ from each other.
    """
    vec = np.zeros(dimension, dtype=np.float32)
    vec[0] = similarity
    vec[axis] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vec


def run_sync(coro: Any) -> Any:
    """Run a coroutine on a private loop, leaving the current loop untouched."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.run_until_complete(loop.shutdown_default_executor())
        loop.close()


def query_axis(dimension: int = DIM) -> np.ndarray:
    vec = np.zeros(dimension, dtype=np.float32)
    vec[0] = 1.0
    return vec


SAMPLE_PACKAGES = [
    NewPackage(
        slug="django",
        name="Django",
        language=Language.PYTHON,
        description="The web framework for perfectionists with deadlines",
        readme="Django is a high-level Python web framework.",
        ecosystem="pypi",
        stars=80000,
        downloads=12_000_000,
        license="BSD-3-Clause",
        popularity_score=95.0,
        last_updated=datetime(2024, 5, 1, tzinfo=UTC),
        categories=["Web Frameworks"],
    ),
    NewPackage(
        slug="celery",
        name="Celery",
        language=Language.PYTHON,
        description="Distributed task queue",
        readme="Integrates with Django and Flask.",
        ecosystem="pypi",
        stars=24000,
        downloads=9_000_000,
        license="BSD-3-Clause",
        popularity_score=97.0,
        last_updated=datetime(2024, 3, 1, tzinfo=UTC),
        categories=["Task Queues"],
    ),
    NewPackage(
        slug="django-rest-framework",
        name="Django REST framework",
        language=Language.PYTHON,
        description="Web APIs for Django",
        ecosystem="pypi",
        stars=28000,
        downloads=5_000_000,
        license="BSD-3-Clause",
        popularity_score=85.0,
        last_updated=datetime(2024, 4, 1, tzinfo=UTC),
        categories=["Web Frameworks", "APIs"],
    ),
    NewPackage(
        slug="flask",
        name="Flask",
        language=Language.PYTHON,
        description="A lightweight WSGI web application framework",
        ecosystem="pypi",
        stars=68000,
        downloads=11_000_000,
        license="BSD-3-Clause",
        popularity_score=90.0,
        last_updated=datetime(2024, 2, 1, tzinfo=UTC),
        categories=["Web Frameworks"],
    ),
    NewPackage(
        slug="requests",
        name="Requests",
        language=Language.PYTHON,
        description="HTTP for Humans",
        ecosystem="pypi",
        stars=52000,
        downloads=30_000_000,
        license="Apache-2.0",
        popularity_score=92.0,
        last_updated=datetime(2023, 12, 1, tzinfo=UTC),
        categories=["HTTP Clients"],
    ),
    NewPackage(
        slug="express",
        name="Express",
        language=Language.NODEJS,
        description="Fast, unopinionated, minimalist web framework for node",
        ecosystem="npm",
        stars=65000,
        downloads=25_000_000,
        license="MIT",
        popularity_score=93.0,
        last_updated=datetime(2024, 1, 1, tzinfo=UTC),
        categories=["Web Frameworks"],
    ),
    NewPackage(
        slug="axios",
        name="axios",
        language=Language.NODEJS,
        description="Promise based HTTP client for the browser and node.js",
        ecosystem="npm",
        stars=105000,
        downloads=40_000_000,
        license="MIT",
        popularity_score=94.0,
        last_updated=datetime(2024, 6, 1, tzinfo=UTC),
        categories=["HTTP Clients"],
    ),
    NewPackage(
        slug="tokio",
        name="Tokio",
        language=Language.RUST,
        description="A runtime for writing reliable asynchronous applications",
        ecosystem="crates",
        stars=26000,
        downloads=150_000_000,
        license="MIT",
        popularity_score=88.0,
        last_updated=datetime(2024, 6, 15, tzinfo=UTC),
        categories=["Async Runtimes"],
    ),
]


@pytest.fixture
def temp_db(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a temporary catalog database with schema."""
    db = Database(tmp_path / "catalog.db")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def store(temp_db: Database) -> PackageStore:
    """Empty package store."""
    return PackageStore(temp_db)


@pytest.fixture
def seeded_store(store: PackageStore) -> PackageStore:
    """Package store holding SAMPLE_PACKAGES (ids 1..8 in list order)."""
    run_sync(store.upsert_packages(SAMPLE_PACKAGES))
    return store


@pytest.fixture
def fake_model() -> FakeEmbeddingModel:
    return FakeEmbeddingModel()


@pytest.fixture
def model_factory(fake_model: FakeEmbeddingModel) -> CountingFactory:
    return CountingFactory(fake_model)


@pytest.fixture
def generator(model_factory: CountingFactory) -> EmbeddingGenerator:
    """Embedding generator backed by the fake model."""
    return EmbeddingGenerator(EmbeddingConfig(), model_factory=model_factory)


@pytest.fixture
def make_vector() -> Callable[[float, int], np.ndarray]:
    """Build a unit vector with a given cosine against ``query_vector``."""
    return vector_at


@pytest.fixture
def query_vector() -> np.ndarray:
    return query_axis()


@pytest.fixture
def slug_ids(seeded_store: PackageStore) -> dict[str, int]:
    """slug -> package id for the seeded catalog."""
    records = run_sync(seeded_store.list_packages())
    return {r.slug: r.id for r in records}


class FakeMeilisearch:
    """In-memory Meilisearch stand-in served through ``httpx.MockTransport``.

    Records every request. Documents are keyed by slug; every mutating call
    returns a task whose final status is ``task_status``. Set ``healthy`` to
    False to simulate a refused connection.
    """

    def __init__(self, index_name: str = "packages") -> None:
        self.index_name = index_name
        self.healthy = True
        self.index_exists = False
        self.task_status = "succeeded"
        self.settings: dict[str, Any] | None = None
        self.documents: dict[str, dict[str, Any]] = {}
        self.tasks: dict[int, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.search_bodies: list[dict[str, Any]] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport(), base_url="http://meili.test")

    def calls(self, method: str | None = None) -> list[tuple[str, str]]:
        return [
            (r.method, r.url.path) for r in self.requests if method is None or r.method == method
        ]

    def _task(self, kind: str) -> httpx.Response:
        uid = len(self.tasks)
        task: dict[str, Any] = {"uid": uid, "type": kind, "status": self.task_status}
        if self.task_status == "failed":
            task["error"] = {"message": f"{kind} rejected"}
        self.tasks[uid] = task
        return httpx.Response(
            202, json={"taskUid": uid, "indexUid": self.index_name, "status": "enqueued"}
        )

    def _search(self, body: dict[str, Any]) -> httpx.Response:
        self.search_bodies.append(body)
        term = str(body.get("q", "")).lower()
        hits = []
        for doc in self.documents.values():
            if term in doc["name"].lower() or term in doc["description"].lower():
                hit = dict(doc)
                hit["_formatted"] = {
                    "name": doc["name"],
                    "description": doc["description"],
                }
                hits.append(hit)
        offset = body.get("offset", 0)
        limit = body.get("limit", 20)
        return httpx.Response(
            200,
            json={
                "hits": hits[offset : offset + limit],
                "estimatedTotalHits": len(hits),
                "processingTimeMs": 3,
                "query": body.get("q", ""),
            },
        )

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.healthy:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        index = f"/indexes/{self.index_name}"
        method = request.method
        body = json.loads(request.content) if request.content else None

        if path == "/health":
            return httpx.Response(200, json={"status": "available"})
        if path.startswith("/tasks/"):
            uid = int(path.rsplit("/", 1)[1])
            return httpx.Response(200, json=self.tasks[uid])
        if path == "/indexes" and method == "POST":
            self.index_exists = True
            return self._task("indexCreation")
        if not path.startswith(index):
            return httpx.Response(404, json={"message": "not found", "code": "not_found"})
        if not self.index_exists:
            return httpx.Response(
                404,
                json={"message": f"Index `{self.index_name}` not found.", "code": "index_not_found"},
            )
        if path == index and method == "GET":
            return httpx.Response(200, json={"uid": self.index_name, "primaryKey": "slug"})
        if path == f"{index}/settings" and method == "PATCH":
            self.settings = body
            return self._task("settingsUpdate")
        if path == f"{index}/documents" and method == "DELETE":
            self.documents.clear()
            return self._task("documentDeletion")
        if path == f"{index}/documents" and method == "POST":
            for doc in body:
                self.documents[doc["slug"]] = doc
            return self._task("documentAdditionOrUpdate")
        if path == f"{index}/search" and method == "POST":
            return self._search(body)
        if path == f"{index}/stats":
            return httpx.Response(
                200,
                json={
                    "numberOfDocuments": len(self.documents),
                    "isIndexing": False,
                    "fieldDistribution": {},
                },
            )
        return httpx.Response(404, json={"message": "not found", "code": "not_found"})


@pytest.fixture
def fake_meili() -> FakeMeilisearch:
    return FakeMeilisearch()


@pytest.fixture
def fulltext_index(fake_meili: FakeMeilisearch) -> FullTextIndex:
    """FullTextIndex wired to the in-memory service."""
    return FullTextIndex(
        FullTextConfig(batch_size=3),
        TimeoutsConfig(task_wait_sec=2.0),
        client=fake_meili.client(),
    )
