"""External full-text index (Meilisearch) over the package catalog.

The index is a derived, eventually consistent projection of the record
store. It is rebuilt wholesale by ``sync``: every document is deleted, then
the current snapshot is added in chunks. Meilisearch applies both steps as
asynchronous tasks, so a sync returning does not mean the index is caught
up. ``wait_for_task`` is there for callers that need that.

Ranking is delegated to the service. This module owns the index settings
pushed at initialization, the document shape, and the shape of filters,
sort expressions and hits exchanged with the service.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from pkgatlas.catalog.models import Language
from pkgatlas.catalog.store import PackageRecord
from pkgatlas.config.constants import HIGHLIGHT_ATTRIBUTES, HIGHLIGHT_POST_TAG, HIGHLIGHT_PRE_TAG
from pkgatlas.config.models import FullTextConfig, TimeoutsConfig
from pkgatlas.core.errors import FullTextError
from pkgatlas.search.models import CategoryOut, SearchResult, SortKey

log = structlog.get_logger()

PRIMARY_KEY = "slug"

# Order is priority: earlier attributes win the "attribute" ranking rule.
SEARCHABLE_ATTRIBUTES = ("name", "slug", "description", "readme", "categories")
FILTERABLE_ATTRIBUTES = ("language", "license", "stars", "downloads", "categories", "categoryIds")
SORTABLE_ATTRIBUTES = ("stars", "downloads", "lastUpdated", "name", "popularityScore")
RANKING_RULES = ("words", "typo", "proximity", "attribute", "sort", "exactness")

SORT_EXPRESSIONS: dict[SortKey, str] = {
    SortKey.STARS: "stars:desc",
    SortKey.DOWNLOADS: "downloads:desc",
    SortKey.RECENT: "lastUpdated:desc",
    SortKey.NAME: "name:asc",
}

_TERMINAL_TASK_STATES = frozenset({"succeeded", "failed", "canceled"})
_TASK_POLL_INTERVAL_SEC = 0.25


@dataclass(frozen=True)
class FullTextDocument:
    """Denormalized package projection stored in the index."""

    id: int
    slug: str
    name: str
    description: str
    readme: str
    language: str
    ecosystem: str
    stars: int
    downloads: int
    forks: int
    license: str | None
    categories: list[str]
    categoryIds: list[int]
    lastUpdated: int | None
    popularityScore: float
    githubUrl: str | None
    registryUrl: str | None
    docsUrl: str | None
    homepageUrl: str | None
    installCommand: str | None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _to_millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def _from_millis(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


def to_document(record: PackageRecord) -> FullTextDocument:
    return FullTextDocument(
        id=record.id,
        slug=record.slug,
        name=record.name,
        description=record.description,
        readme=record.readme or "",
        language=record.language.value,
        ecosystem=record.ecosystem,
        stars=record.stars,
        downloads=record.downloads,
        forks=record.forks,
        license=record.license,
        categories=[c.name for c in record.categories],
        categoryIds=[c.id for c in record.categories],
        lastUpdated=_to_millis(record.last_updated),
        popularityScore=record.popularity_score,
        githubUrl=record.github_url,
        registryUrl=record.registry_url,
        docsUrl=record.docs_url,
        homepageUrl=record.homepage_url,
        installCommand=record.install_command,
    )


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_filter(
    language: Language | None = None,
    min_stars: int | None = None,
    license: str | None = None,
) -> str | None:
    """Meilisearch filter expression joining the given conditions with AND."""
    clauses: list[str] = []
    if language is not None:
        clauses.append(f"language = {_quote(language.value)}")
    if min_stars is not None:
        clauses.append(f"stars >= {int(min_stars)}")
    if license is not None:
        clauses.append(f"license = {_quote(license)}")
    return " AND ".join(clauses) if clauses else None


def build_sort(sort_by: SortKey) -> list[str] | None:
    """Sort expressions for ``sort_by``; relevance leaves ranking to the service."""
    expr = SORT_EXPRESSIONS.get(sort_by)
    return [expr] if expr else None


def hit_to_result(hit: dict[str, Any]) -> SearchResult:
    """Map one search hit onto the shared result shape."""
    formatted = hit.get("_formatted") or {}
    highlighted = {k: formatted[k] for k in HIGHLIGHT_ATTRIBUTES if k in formatted} or None
    return SearchResult(
        id=hit["id"],
        slug=hit["slug"],
        name=hit["name"],
        description=hit.get("description") or "",
        language=Language.parse(hit["language"]),
        ecosystem=hit.get("ecosystem") or "",
        stars=hit.get("stars") or 0,
        forks=hit.get("forks") or 0,
        downloads=hit.get("downloads") or 0,
        license=hit.get("license"),
        popularity_score=hit.get("popularityScore") or 0.0,
        github_url=hit.get("githubUrl"),
        registry_url=hit.get("registryUrl"),
        docs_url=hit.get("docsUrl"),
        homepage_url=hit.get("homepageUrl"),
        install_command=hit.get("installCommand"),
        last_updated=_from_millis(hit.get("lastUpdated")),
        categories=[CategoryOut(name=name) for name in hit.get("categories") or []],
        highlighted=highlighted,
    )


@dataclass
class FullTextHits:
    """One page of hits as returned by the service."""

    hits: list[dict[str, Any]]
    estimated_total_hits: int
    processing_time_ms: int
    query: str


@dataclass
class SyncReport:
    """Outcome of a wholesale rebuild."""

    total: int = 0
    queued: int = 0
    skipped: int = 0
    task_uids: list[int] = field(default_factory=list)


class FullTextIndex:
    """Async client for one Meilisearch index.

    Every HTTP call carries the configured timeout. Transport failures map
    to ``FullTextError.unavailable``, timeouts to ``FullTextError.timeout``,
    and non-2xx responses to ``FullTextError.request_failed``.
    """

    def __init__(
        self,
        config: FullTextConfig | None = None,
        timeouts: TimeoutsConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or FullTextConfig()
        self._timeouts = timeouts or TimeoutsConfig()
        self._owns_client = client is None
        if client is None:
            headers = {}
            if self._config.api_key:
                headers["Authorization"] = f"Bearer {self._config.api_key}"
            client = httpx.AsyncClient(
                base_url=self._config.host,
                headers=headers,
                timeout=self._timeouts.fulltext_sec,
            )
        self._client = client

    @property
    def host(self) -> str:
        return self._config.host

    @property
    def index_name(self) -> str:
        return self._config.index_name

    @property
    def _index_path(self) -> str:
        return f"/indexes/{self._config.index_name}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise FullTextError.timeout(path, self._timeouts.fulltext_sec) from e
        except httpx.TransportError as e:
            raise FullTextError.unavailable(self._config.host, str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            raise FullTextError.request_failed(path, response.status_code, _error_reason(response))
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise FullTextError.request_failed(path, response.status_code, "invalid JSON body") from e

    # ------------------------------------------------------------------
    # Index configuration
    # ------------------------------------------------------------------

    def settings_payload(self) -> dict[str, Any]:
        return {
            "searchableAttributes": list(SEARCHABLE_ATTRIBUTES),
            "filterableAttributes": list(FILTERABLE_ATTRIBUTES),
            "sortableAttributes": list(SORTABLE_ATTRIBUTES),
            "rankingRules": list(RANKING_RULES),
            "typoTolerance": {
                "enabled": True,
                "minWordSizeForTypos": {
                    "oneTypo": self._config.one_typo_min_word_size,
                    "twoTypos": self._config.two_typos_min_word_size,
                },
                "disableOnWords": [],
                "disableOnAttributes": [],
            },
        }

    async def initialize(self) -> bool:
        """Create the index if needed and push its settings. Idempotent.

        Returns False (after logging) when the service cannot be configured;
        callers decide whether that is fatal.
        """
        try:
            await self._request("GET", "/health")
            await self._ensure_index()
            task = await self._request("PATCH", f"{self._index_path}/settings", json=self.settings_payload())
        except FullTextError as e:
            log.error("fulltext.initialize_failed", index=self.index_name, error=str(e))
            return False

        log.info("fulltext.initialized", index=self.index_name, task_uid=_task_uid(task))
        return True

    async def _ensure_index(self) -> None:
        try:
            await self._request("GET", self._index_path)
            log.debug("fulltext.index_exists", index=self.index_name)
        except FullTextError as e:
            if e.details.get("status") != 404:
                raise
            await self._request(
                "POST", "/indexes", json={"uid": self.index_name, "primaryKey": PRIMARY_KEY}
            )
            log.info("fulltext.index_created", index=self.index_name)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _documents(self, records: Iterable[PackageRecord], report: SyncReport) -> list[dict[str, Any]]:
        documents: list[dict[str, Any]] = []
        for record in records:
            report.total += 1
            try:
                documents.append(to_document(record).to_dict())
            except (AttributeError, TypeError, ValueError) as e:
                report.skipped += 1
                log.warning("fulltext.document_skipped", slug=getattr(record, "slug", None), error=str(e))
        return documents

    async def sync(self, records: Sequence[PackageRecord]) -> SyncReport:
        """Replace the index contents with ``records``.

        Returns once the delete and add tasks are queued; they complete
        asynchronously on the service.
        """
        report = SyncReport()
        documents = self._documents(records, report)

        task = await self._request("DELETE", f"{self._index_path}/documents")
        report.task_uids.append(_task_uid(task))

        size = self._config.batch_size
        for start in range(0, len(documents), size):
            chunk = documents[start : start + size]
            task = await self._request(
                "POST",
                f"{self._index_path}/documents",
                json=chunk,
                params={"primaryKey": PRIMARY_KEY},
            )
            report.task_uids.append(_task_uid(task))
            report.queued += len(chunk)
            log.debug("fulltext.chunk_queued", start=start, size=len(chunk))

        log.info(
            "fulltext.sync_queued",
            index=self.index_name,
            total=report.total,
            queued=report.queued,
            skipped=report.skipped,
        )
        return report

    async def wait_for_task(self, task_uid: int) -> dict[str, Any]:
        """Poll a task until it reaches a terminal state.

        Raises:
            FullTextError: task_failed if the task failed or was canceled,
                timeout if it does not finish within ``timeouts.task_wait_sec``.
        """
        path = f"/tasks/{task_uid}"
        try:
            async with asyncio.timeout(self._timeouts.task_wait_sec):
                while True:
                    task = await self._request("GET", path)
                    if task.get("status") in _TERMINAL_TASK_STATES:
                        break
                    await asyncio.sleep(_TASK_POLL_INTERVAL_SEC)
        except TimeoutError as e:
            raise FullTextError.timeout(path, self._timeouts.task_wait_sec) from e

        if task["status"] != "succeeded":
            error = task.get("error") or {}
            raise FullTextError.task_failed(task_uid, error.get("message") or task["status"])
        return task  # type: ignore[no-any-return]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(
        self,
        text: str,
        *,
        filter: str | None = None,
        sort: list[str] | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> FullTextHits:
        body: dict[str, Any] = {
            "q": text,
            "limit": limit,
            "offset": offset,
            "attributesToHighlight": list(HIGHLIGHT_ATTRIBUTES),
            "highlightPreTag": HIGHLIGHT_PRE_TAG,
            "highlightPostTag": HIGHLIGHT_POST_TAG,
        }
        if filter:
            body["filter"] = filter
        if sort:
            body["sort"] = sort

        data = await self._request("POST", f"{self._index_path}/search", json=body)
        return FullTextHits(
            hits=data.get("hits", []),
            estimated_total_hits=data.get("estimatedTotalHits", 0),
            processing_time_ms=data.get("processingTimeMs", 0),
            query=data.get("query", text),
        )

    async def health(self) -> dict[str, Any]:
        """Service health. Never raises; failures are reported in the body."""
        try:
            body = await self._request("GET", "/health")
        except FullTextError as e:
            log.warning("fulltext.unhealthy", error=e.message)
            return {"isHealthy": False, "error": e.message}
        return {"isHealthy": True, **(body or {})}

    async def stats(self) -> dict[str, Any]:
        """Index stats (``numberOfDocuments``, ``isIndexing``, ...)."""
        return await self._request("GET", f"{self._index_path}/stats")  # type: ignore[no-any-return]


def _task_uid(task: Any) -> int:
    if isinstance(task, dict):
        return int(task.get("taskUid", task.get("uid", -1)))
    return -1


def _error_reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase
