"""Async facade over the package catalog.

The search core talks to the system of record only through PackageStore.
SQLite work is blocking, so every public coroutine runs its query in the
loop's default executor: each store call is one suspension point and the
event loop never blocks on disk I/O.

Rows leave the store as frozen PackageRecord snapshots, never as live ORM
objects, so callers cannot trigger lazy loads after the session closed.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from functools import partial
from typing import Any, Literal, TypeVar

import numpy as np
import structlog
from sqlalchemy import ColumnElement, String, func, or_
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import selectinload
from sqlmodel import Session, col, select

from pkgatlas.catalog.db import Database
from pkgatlas.catalog.models import Category, Language, Package, utcnow
from pkgatlas.core.errors import StoreError

logger = structlog.get_logger()

T = TypeVar("T")

OrderBy = Literal["popularity", "stars", "downloads", "recent", "name"]
TextField = Literal["name", "slug", "description", "readme"]

_VECTOR_DTYPE = np.dtype("<f4")
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")

_ORDERINGS: dict[str, tuple[Any, ...]] = {
    "popularity": (col(Package.popularity_score).desc(), col(Package.id).asc()),
    "stars": (col(Package.stars).desc(), col(Package.id).asc()),
    "downloads": (col(Package.downloads).desc(), col(Package.id).asc()),
    "recent": (col(Package.last_updated).desc(), col(Package.id).asc()),
    "name": (col(Package.name).asc(), col(Package.id).asc()),
}


def encode_vector(vector: Sequence[float] | np.ndarray) -> bytes:
    """Serialize a vector as little-endian float32 bytes."""
    return np.asarray(vector, dtype=_VECTOR_DTYPE).tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """Inverse of encode_vector. Returns a float32 array."""
    return np.frombuffer(blob, dtype=_VECTOR_DTYPE).astype(np.float32)


def slugify(name: str) -> str:
    return _SLUG_STRIP.sub("-", name.lower()).strip("-")


@dataclass(frozen=True, slots=True)
class CategoryRef:
    id: int
    name: str


@dataclass(frozen=True, slots=True)
class PackageRecord:
    """Read-only snapshot of a Package row."""

    id: int
    slug: str
    name: str
    description: str
    language: Language
    ecosystem: str = ""
    readme: str | None = None
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
    categories: tuple[CategoryRef, ...] = ()
    embedding: np.ndarray | None = field(default=None, compare=False, repr=False)
    embedding_model: str | None = None
    embedded_at: datetime | None = None

    @property
    def category_names(self) -> list[str]:
        return [c.name for c in self.categories]

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None


@dataclass
class NewPackage:
    """Input shape for upserting a package (used by import collaborators)."""

    slug: str
    name: str
    language: Language
    description: str = ""
    readme: str | None = None
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
    categories: list[str] = field(default_factory=list)


def _category_refs(pkg: Package) -> tuple[CategoryRef, ...]:
    return tuple(
        CategoryRef(id=c.id or 0, name=c.name) for c in sorted(pkg.categories, key=lambda c: c.name)
    )


def _to_record(pkg: Package, *, with_categories: bool = True) -> PackageRecord:
    assert pkg.id is not None
    categories = _category_refs(pkg) if with_categories else ()
    return PackageRecord(
        id=pkg.id,
        slug=pkg.slug,
        name=pkg.name,
        description=pkg.description,
        readme=pkg.readme,
        language=Language(pkg.language),
        ecosystem=pkg.ecosystem,
        stars=pkg.stars,
        forks=pkg.forks,
        downloads=pkg.downloads,
        license=pkg.license,
        popularity_score=pkg.popularity_score,
        github_url=pkg.github_url,
        registry_url=pkg.registry_url,
        docs_url=pkg.docs_url,
        homepage_url=pkg.homepage_url,
        install_command=pkg.install_command,
        last_updated=pkg.last_updated,
        categories=categories,
        embedding=decode_vector(pkg.embedding) if pkg.embedding is not None else None,
        embedding_model=pkg.embedding_model,
        embedded_at=pkg.embedded_at,
    )


class PackageStore:
    """Async access to packages, categories and stored embeddings."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def database(self) -> Database:
        return self._db

    async def _run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(fn, *args, **kwargs))
        except OperationalError as e:
            logger.error("catalog.query_failed", error=str(e.orig or e))
            raise StoreError.store_unavailable(str(e.orig or e)) from e

    # ------------------------------------------------------------------
    # Schema / writes
    # ------------------------------------------------------------------

    async def create_all(self) -> None:
        await self._run(self._db.create_all)

    async def upsert_packages(self, packages: Sequence[NewPackage]) -> int:
        """Insert or update packages by slug, creating categories by name."""
        return await self._run(self._upsert_packages, list(packages))

    def _upsert_packages(self, packages: list[NewPackage]) -> int:
        with self._db.transaction() as session:
            category_cache: dict[str, Category] = {}
            for new in packages:
                pkg = session.exec(select(Package).where(Package.slug == new.slug)).first()
                values = {
                    k: v
                    for k, v in vars(new).items()
                    if k not in ("categories", "last_updated")
                }
                if pkg is None:
                    pkg = Package(**values)
                else:
                    for key, value in values.items():
                        setattr(pkg, key, value)
                    pkg.updated_at = utcnow()
                if new.last_updated is not None:
                    pkg.last_updated = new.last_updated
                pkg.categories = [
                    self._get_or_create_category(session, name, category_cache)
                    for name in dict.fromkeys(new.categories)
                ]
                session.add(pkg)
        logger.info("catalog.packages_upserted", count=len(packages))
        return len(packages)

    @staticmethod
    def _get_or_create_category(
        session: Session, name: str, cache: dict[str, Category]
    ) -> Category:
        if name in cache:
            return cache[name]
        category = session.exec(select(Category).where(Category.name == name)).first()
        if category is None:
            category = Category(name=name, slug=slugify(name))
            session.add(category)
        cache[name] = category
        return category

    async def save_embedding(
        self, package_id: int, vector: Sequence[float] | np.ndarray, model_name: str
    ) -> None:
        await self._run(self._save_embedding, package_id, encode_vector(vector), model_name)

    def _save_embedding(self, package_id: int, blob: bytes, model_name: str) -> None:
        with self._db.transaction() as session:
            pkg = session.get(Package, package_id)
            if pkg is None:
                raise StoreError.store_unavailable(f"package {package_id} disappeared")
            pkg.embedding = blob
            pkg.embedding_model = model_name
            pkg.embedded_at = utcnow()
            session.add(pkg)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def count_packages(self) -> int:
        return await self._run(self._count, [])

    async def count_embedded(self, model_name: str | None = None) -> int:
        conditions: list[ColumnElement[bool]] = [col(Package.embedding).is_not(None)]
        if model_name is not None:
            conditions.append(col(Package.embedding_model) == model_name)
        return await self._run(self._count, conditions)

    def _count(self, conditions: list[ColumnElement[bool]]) -> int:
        with self._db.session() as session:
            stmt = select(func.count()).select_from(Package).where(*conditions)
            return int(session.exec(stmt).one())

    async def list_packages(self, *, missing_embedding_only: bool = False) -> list[PackageRecord]:
        """Every package with categories resolved, ordered by id."""
        return await self._run(self._list_packages, missing_embedding_only)

    def _list_packages(self, missing_embedding_only: bool) -> list[PackageRecord]:
        with self._db.session() as session:
            stmt = select(Package).options(selectinload(Package.categories))  # type: ignore[arg-type]
            if missing_embedding_only:
                stmt = stmt.where(col(Package.embedding).is_(None))
            rows = session.exec(stmt.order_by(col(Package.id).asc())).all()
            return [_to_record(p) for p in rows]

    async def embedded_candidates(
        self,
        *,
        language: Language | None = None,
        model_name: str | None = None,
    ) -> list[PackageRecord]:
        """Packages that have a stored vector, ordered by id.

        The language filter narrows membership only; it never touches scores.
        """
        return await self._run(self._embedded_candidates, language, model_name)

    def _embedded_candidates(
        self, language: Language | None, model_name: str | None
    ) -> list[PackageRecord]:
        with self._db.session() as session:
            stmt = select(Package).where(col(Package.embedding).is_not(None))
            if language is not None:
                stmt = stmt.where(Package.language == language)
            if model_name is not None:
                stmt = stmt.where(Package.embedding_model == model_name)
            rows = session.exec(stmt.order_by(col(Package.id).asc())).all()
            return [_to_record(p, with_categories=False) for p in rows]

    async def categories_for(
        self, package_ids: Sequence[int]
    ) -> dict[int, tuple[CategoryRef, ...]]:
        """Categories of each given package, sorted by name. One query for all ids."""
        if not package_ids:
            return {}
        return await self._run(self._categories_for, list(package_ids))

    def _categories_for(self, package_ids: list[int]) -> dict[int, tuple[CategoryRef, ...]]:
        with self._db.session() as session:
            stmt = (
                select(Package)
                .where(col(Package.id).in_(package_ids))
                .options(selectinload(Package.categories))  # type: ignore[arg-type]
            )
            return {
                pkg.id: _category_refs(pkg) for pkg in session.exec(stmt).all() if pkg.id is not None
            }

    async def keyword_search(
        self,
        text: str | None,
        *,
        fields: Sequence[TextField] = ("name", "slug", "description", "readme"),
        language: Language | None = None,
        min_stars: int | None = None,
        license: str | None = None,
        order_by: OrderBy = "popularity",
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[PackageRecord], int]:
        """Case-insensitive substring match over ``fields`` plus filters.

        Returns one page of records and the total number of matches.
        """
        conditions: list[ColumnElement[bool]] = []
        if text:
            term = text.lower()
            conditions.append(
                or_(
                    *(
                        func.lower(getattr(Package, name), type_=String).contains(term, autoescape=True)
                        for name in fields
                    )
                )
            )
        if language is not None:
            conditions.append(col(Package.language) == language)
        if min_stars is not None:
            conditions.append(col(Package.stars) >= min_stars)
        if license is not None:
            conditions.append(col(Package.license) == license)
        return await self._run(self._keyword_search, conditions, order_by, limit, offset)

    def _keyword_search(
        self,
        conditions: list[ColumnElement[bool]],
        order_by: OrderBy,
        limit: int,
        offset: int,
    ) -> tuple[list[PackageRecord], int]:
        with self._db.session() as session:
            stmt = (
                select(Package)
                .where(*conditions)
                .options(selectinload(Package.categories))  # type: ignore[arg-type]
                .order_by(*_ORDERINGS[order_by])
                .limit(limit)
                .offset(offset)
            )
            rows = session.exec(stmt).all()
            total = session.exec(select(func.count()).select_from(Package).where(*conditions)).one()
            return [_to_record(p) for p in rows], int(total)
