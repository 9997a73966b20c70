"""Request and response shapes shared by every search strategy.

Python attributes are snake_case; the JSON wire format is camelCase
(``minStars``, ``sortBy``, ``totalPages``) through pydantic aliases.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from pkgatlas.catalog.models import Language
from pkgatlas.catalog.store import PackageRecord
from pkgatlas.config.constants import LANGUAGE_ALL, LICENSE_ALL, SEARCH_MAX_LIMIT
from pkgatlas.core.errors import QueryError


class SearchMode(str, Enum):
    """Retrieval strategy. Always stated by the caller, never inferred."""

    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    EXTERNAL_INDEX = "external-index"


class SortKey(str, Enum):
    RELEVANCE = "relevance"
    STARS = "stars"
    DOWNLOADS = "downloads"
    RECENT = "recent"
    NAME = "name"


ResultSource = Literal["semantic", "keyword"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchQuery(_CamelModel):
    """Inbound search request.

    Blank ``q`` and the ``"all"`` language/license values normalise to None.
    ``limit`` stays None until the dispatcher applies the per-mode default.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    q: str | None = None
    language: Language | None = None
    min_stars: int | None = Field(default=None, ge=0)
    license: str | None = None
    sort_by: SortKey = SortKey.RELEVANCE
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1, le=SEARCH_MAX_LIMIT)

    @field_validator("q", mode="before")
    @classmethod
    def _blank_query(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("language", mode="before")
    @classmethod
    def _parse_language(cls, v: Any) -> Any:
        if isinstance(v, str):
            if not v.strip() or v.strip().lower() == LANGUAGE_ALL:
                return None
            try:
                return Language.parse(v)
            except ValueError:
                allowed = ", ".join(lang.value for lang in Language)
                raise ValueError(f"unknown language, expected one of {allowed}") from None
        return v

    @field_validator("license", mode="before")
    @classmethod
    def _parse_license(cls, v: Any) -> Any:
        if isinstance(v, str) and (not v.strip() or v.strip().lower() == LICENSE_ALL):
            return None
        return v

    @classmethod
    def from_params(cls, params: Mapping[str, str]) -> SearchQuery:
        """Build from raw query-string values, raising QueryError on bad input."""
        known = {name: params[name] for name in _PARAM_NAMES if name in params}
        try:
            return cls.model_validate(known)
        except ValidationError as e:
            err = e.errors()[0]
            name = ".".join(str(loc) for loc in err["loc"]) or "query"
            raise QueryError.invalid_parameter(name, err.get("input"), err["msg"]) from e

    def with_limit(self, default: int) -> SearchQuery:
        return self if self.limit is not None else self.model_copy(update={"limit": default})

    @property
    def effective_limit(self) -> int:
        if self.limit is None:
            raise ValueError("limit not resolved; call with_limit() first")
        return self.limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.effective_limit


_PARAM_NAMES = ("q", "language", "minStars", "license", "sortBy", "page", "limit")


class CategoryOut(_CamelModel):
    name: str
    id: int | None = None


class SearchResult(_CamelModel):
    """One ranked package. Transient, never persisted.

    ``similarity`` is the relevance signal: a cosine similarity for semantic
    hits or the configured default weight for keyword hits inside a hybrid
    result. Plain keyword results carry no similarity.
    """

    id: int
    slug: str
    name: str
    description: str
    language: Language
    ecosystem: str = ""
    stars: int = 0
    forks: int = 0
    downloads: int = 0
    license: str | None = None
    popularity_score: float = 0.0
    github_url: str | None = None
    registry_url: str | None = None
    docs_url: str | None = None
    homepage_url: str | None = None
    install_command: str | None = None
    last_updated: datetime | None = None
    categories: list[CategoryOut] = Field(default_factory=list)

    similarity: float | None = None
    source: ResultSource | None = None
    highlighted: dict[str, Any] | None = Field(default=None, alias="_highlighted")

    @property
    def relevance(self) -> float:
        return self.similarity if self.similarity is not None else 0.0

    @classmethod
    def from_record(
        cls,
        record: PackageRecord,
        *,
        similarity: float | None = None,
        source: ResultSource | None = None,
    ) -> SearchResult:
        return cls(
            id=record.id,
            slug=record.slug,
            name=record.name,
            description=record.description,
            language=record.language,
            ecosystem=record.ecosystem,
            stars=record.stars,
            forks=record.forks,
            downloads=record.downloads,
            license=record.license,
            popularity_score=record.popularity_score,
            github_url=record.github_url,
            registry_url=record.registry_url,
            docs_url=record.docs_url,
            homepage_url=record.homepage_url,
            install_command=record.install_command,
            last_updated=record.last_updated,
            categories=[CategoryOut(id=c.id, name=c.name) for c in record.categories],
            similarity=similarity,
            source=source,
        )

    def to_json(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        for key in ("similarity", "source", "_highlighted"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


class Pagination(_CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> Pagination:
        return cls(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit))


class SearchResponse(_CamelModel):
    """Normalised response: paginated modes fill ``pagination``; others ``meta``."""

    data: list[SearchResult] = Field(default_factory=list)
    pagination: Pagination | None = None
    meta: dict[str, Any] | None = None

    def to_json(self) -> dict[str, Any]:
        body: dict[str, Any] = {"data": [r.to_json() for r in self.data]}
        if self.pagination is not None:
            body["pagination"] = self.pagination.model_dump(by_alias=True)
        if self.meta is not None:
            body["meta"] = self.meta
        return body
