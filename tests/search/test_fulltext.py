"""Tests for search/fulltext.py - Meilisearch index client.

The service is replaced by an in-memory fake behind httpx.MockTransport.
"""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest

from pkgatlas.catalog.models import Language
from pkgatlas.catalog.store import PackageStore
from pkgatlas.config.models import FullTextConfig, TimeoutsConfig
from pkgatlas.core.errors import ErrorCode, FullTextError
from pkgatlas.search.fulltext import (
    RANKING_RULES,
    FullTextIndex,
    build_filter,
    build_sort,
    hit_to_result,
    to_document,
)
from pkgatlas.search.models import SortKey


class TestBuildFilter:
    """Tests for filter expression construction."""

    def test_no_conditions(self) -> None:
        assert build_filter() is None

    def test_all_conditions_joined_with_and(self) -> None:
        expr = build_filter(Language.RUST, 100, "MIT")
        assert expr == 'language = "RUST" AND stars >= 100 AND license = "MIT"'

    def test_zero_min_stars_is_kept(self) -> None:
        assert build_filter(min_stars=0) == "stars >= 0"

    def test_quotes_escaped(self) -> None:
        expr = build_filter(license='BSD "new"')
        assert expr == 'license = "BSD \\"new\\""'


class TestBuildSort:
    def test_relevance_has_no_sort(self) -> None:
        assert build_sort(SortKey.RELEVANCE) is None

    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            (SortKey.STARS, ["stars:desc"]),
            (SortKey.DOWNLOADS, ["downloads:desc"]),
            (SortKey.RECENT, ["lastUpdated:desc"]),
            (SortKey.NAME, ["name:asc"]),
        ],
    )
    def test_sort_expressions(self, key: SortKey, expected: list[str]) -> None:
        assert build_sort(key) == expected


class TestDocuments:
    """Tests for the document projection and hit mapping."""

    @pytest.mark.asyncio
    async def test_to_document_shape(self, seeded_store: PackageStore) -> None:
        record = (await seeded_store.list_packages())[0]

        doc = to_document(record).to_dict()

        assert doc["slug"] == "django"
        assert doc["language"] == "PYTHON"
        assert doc["categories"] == ["Web Frameworks"]
        assert len(doc["categoryIds"]) == 1
        assert doc["lastUpdated"] == int(datetime(2024, 5, 1, tzinfo=UTC).timestamp() * 1000)
        assert doc["readme"].startswith("Django is")

    def test_hit_to_result(self) -> None:
        hit = {
            "id": 7,
            "slug": "axios",
            "name": "axios",
            "description": "Promise based HTTP client",
            "language": "NODEJS",
            "stars": 105000,
            "categories": ["HTTP Clients"],
            "lastUpdated": 1717200000000,
            "popularityScore": 94.0,
            "_formatted": {"name": "<mark>axios</mark>", "description": "x", "readme": "y"},
        }

        result = hit_to_result(hit)

        assert result.language is Language.NODEJS
        assert result.stars == 105000
        assert [c.name for c in result.categories] == ["HTTP Clients"]
        assert result.highlighted == {"name": "<mark>axios</mark>", "description": "x"}
        assert result.last_updated == datetime.fromtimestamp(1717200000, tz=UTC)
        assert result.similarity is None


class TestInitialize:
    """Tests for index creation and settings."""

    def test_settings_payload(self) -> None:
        index = FullTextIndex(FullTextConfig(one_typo_min_word_size=5, two_typos_min_word_size=9))

        payload = index.settings_payload()

        assert payload["rankingRules"] == list(RANKING_RULES)
        assert payload["rankingRules"][:2] == ["words", "typo"]
        assert payload["searchableAttributes"][0] == "name"
        assert "language" in payload["filterableAttributes"]
        assert payload["typoTolerance"]["minWordSizeForTypos"] == {"oneTypo": 5, "twoTypos": 9}

    @pytest.mark.asyncio
    async def test_creates_missing_index(self, fake_meili, fulltext_index: FullTextIndex) -> None:
        """A 404 on the index triggers creation with slug as primary key."""
        ok = await fulltext_index.initialize()

        assert ok is True
        assert ("POST", "/indexes") in fake_meili.calls()
        created = next(r for r in fake_meili.requests if r.url.path == "/indexes")
        assert b'"primaryKey":"slug"' in created.content.replace(b" ", b"")
        assert fake_meili.settings == fulltext_index.settings_payload()

    @pytest.mark.asyncio
    async def test_idempotent(self, fake_meili, fulltext_index: FullTextIndex) -> None:
        await fulltext_index.initialize()
        await fulltext_index.initialize()

        assert fake_meili.calls("POST").count(("POST", "/indexes")) == 1
        assert len(fake_meili.calls("PATCH")) == 2

    @pytest.mark.asyncio
    async def test_unavailable_returns_false(self, fake_meili, fulltext_index: FullTextIndex) -> None:
        fake_meili.healthy = False

        assert await fulltext_index.initialize() is False


class TestSync:
    """Tests for the wholesale rebuild."""

    @pytest.mark.asyncio
    async def test_delete_then_chunked_add(
        self, fake_meili, fulltext_index: FullTextIndex, seeded_store: PackageStore
    ) -> None:
        # Given
        await fulltext_index.initialize()
        fake_meili.requests.clear()
        records = await seeded_store.list_packages()

        # When
        report = await fulltext_index.sync(records)

        # Then
        assert fake_meili.calls() == [
            ("DELETE", "/indexes/packages/documents"),
            ("POST", "/indexes/packages/documents"),
            ("POST", "/indexes/packages/documents"),
            ("POST", "/indexes/packages/documents"),
        ]
        assert all(r.url.params.get("primaryKey") == "slug" for r in fake_meili.requests[1:])
        assert report.total == 8
        assert report.queued == 8
        assert report.skipped == 0
        assert len(report.task_uids) == 4
        assert set(fake_meili.documents) == {r.slug for r in records}

    @pytest.mark.asyncio
    async def test_resync_keeps_one_document_per_slug(
        self, fake_meili, fulltext_index: FullTextIndex, seeded_store: PackageStore
    ) -> None:
        await fulltext_index.initialize()
        records = await seeded_store.list_packages()

        await fulltext_index.sync(records)
        await fulltext_index.sync(records[:5])

        assert len(fake_meili.documents) == 5

    @pytest.mark.asyncio
    async def test_empty_catalog_clears_index(
        self, fake_meili, fulltext_index: FullTextIndex
    ) -> None:
        await fulltext_index.initialize()
        fake_meili.documents["stale"] = {"slug": "stale"}

        report = await fulltext_index.sync([])

        assert report.queued == 0
        assert fake_meili.documents == {}

    @pytest.mark.asyncio
    async def test_missing_index_fails(self, fulltext_index: FullTextIndex) -> None:
        with pytest.raises(FullTextError) as exc_info:
            await fulltext_index.sync([])

        assert exc_info.value.code == ErrorCode.FULLTEXT_REQUEST_FAILED
        assert exc_info.value.details["status"] == 404


class TestWaitForTask:
    @pytest.mark.asyncio
    async def test_succeeded(self, fake_meili, fulltext_index: FullTextIndex) -> None:
        await fulltext_index.initialize()

        task = await fulltext_index.wait_for_task(0)

        assert task["status"] == "succeeded"

    @pytest.mark.asyncio
    async def test_failed_task_raises(self, fake_meili, fulltext_index: FullTextIndex) -> None:
        fake_meili.task_status = "failed"
        await fulltext_index.initialize()

        with pytest.raises(FullTextError) as exc_info:
            await fulltext_index.wait_for_task(0)

        assert exc_info.value.code == ErrorCode.FULLTEXT_TASK_FAILED
        assert "rejected" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_stuck_task_times_out(self, fake_meili) -> None:
        fake_meili.task_status = "processing"
        index = FullTextIndex(
            timeouts=TimeoutsConfig(task_wait_sec=0.3), client=fake_meili.client()
        )
        await index.initialize()

        with pytest.raises(FullTextError) as exc_info:
            await index.wait_for_task(0)

        assert exc_info.value.code == ErrorCode.FULLTEXT_TIMEOUT


class TestQuery:
    """Tests for search requests."""

    @pytest.mark.asyncio
    async def test_request_body(self, fake_meili, fulltext_index: FullTextIndex) -> None:
        await fulltext_index.initialize()

        await fulltext_index.query(
            "http", filter='language = "NODEJS"', sort=["stars:desc"], limit=5, offset=10
        )

        body = fake_meili.search_bodies[-1]
        assert body["q"] == "http"
        assert body["limit"] == 5
        assert body["offset"] == 10
        assert body["filter"] == 'language = "NODEJS"'
        assert body["sort"] == ["stars:desc"]
        assert body["attributesToHighlight"] == ["name", "description"]
        assert body["highlightPreTag"] == "<mark>"

    @pytest.mark.asyncio
    async def test_no_filter_or_sort_keys_when_unset(
        self, fake_meili, fulltext_index: FullTextIndex
    ) -> None:
        await fulltext_index.initialize()

        await fulltext_index.query("http")

        assert "filter" not in fake_meili.search_bodies[-1]
        assert "sort" not in fake_meili.search_bodies[-1]

    @pytest.mark.asyncio
    async def test_hits_and_totals(
        self, fake_meili, fulltext_index: FullTextIndex, seeded_store: PackageStore
    ) -> None:
        await fulltext_index.initialize()
        await fulltext_index.sync(await seeded_store.list_packages())

        hits = await fulltext_index.query("framework", limit=2)

        assert len(hits.hits) == 2
        assert hits.estimated_total_hits == 4
        assert hits.processing_time_ms == 3
        assert hits.query == "framework"

    @pytest.mark.asyncio
    async def test_unreachable_service(self, fake_meili, fulltext_index: FullTextIndex) -> None:
        fake_meili.healthy = False

        with pytest.raises(FullTextError) as exc_info:
            await fulltext_index.query("x")

        assert exc_info.value.code == ErrorCode.FULLTEXT_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://m")
        index = FullTextIndex(client=client)

        with pytest.raises(FullTextError) as exc_info:
            await index.query("x")

        assert exc_info.value.code == ErrorCode.FULLTEXT_TIMEOUT


class TestHealthAndStats:
    @pytest.mark.asyncio
    async def test_healthy(self, fulltext_index: FullTextIndex) -> None:
        assert await fulltext_index.health() == {"isHealthy": True, "status": "available"}

    @pytest.mark.asyncio
    async def test_unhealthy_never_raises(self, fake_meili, fulltext_index: FullTextIndex) -> None:
        fake_meili.healthy = False

        health = await fulltext_index.health()

        assert health["isHealthy"] is False
        assert "error" in health

    @pytest.mark.asyncio
    async def test_stats(
        self, fulltext_index: FullTextIndex, seeded_store: PackageStore
    ) -> None:
        await fulltext_index.initialize()
        await fulltext_index.sync(await seeded_store.list_packages())

        stats = await fulltext_index.stats()

        assert stats["numberOfDocuments"] == 8


class TestClientOwnership:
    @pytest.mark.asyncio
    async def test_injected_client_left_open(self, fake_meili) -> None:
        client = fake_meili.client()
        index = FullTextIndex(client=client)

        await index.aclose()

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_api_key_sent_as_bearer(self) -> None:
        index = FullTextIndex(FullTextConfig(api_key="secret"))
        try:
            assert index._client.headers["Authorization"] == "Bearer secret"
        finally:
            await index.aclose()
