"""SQLModel definitions for the package catalog (system of record).

The slug is the stable external key shared by every derived store: the
full-text document id, the vector lookup key and the public URL.

Embedding vectors live beside the row they describe as float32 bytes plus
the model that produced them and a generation timestamp. They are written
by the embedding batch job only and may lag behind the descriptive text.
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, LargeBinary
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(UTC)


class Language(str, Enum):
    """Language / ecosystem tag used for filtering."""

    PYTHON = "PYTHON"
    NODEJS = "NODEJS"
    RUST = "RUST"

    @classmethod
    def parse(cls, value: str) -> "Language":
        """Case-insensitive lookup (``python`` -> ``PYTHON``)."""
        return cls(value.strip().upper())


class PackageCategoryLink(SQLModel, table=True):
    """Many-to-many association between packages and categories."""

    __tablename__ = "package_category"

    package_id: int | None = Field(default=None, foreign_key="package.id", primary_key=True)
    category_id: int | None = Field(default=None, foreign_key="category.id", primary_key=True)


class Category(SQLModel, table=True):
    """A browsing category (e.g. "Web Frameworks")."""

    __tablename__ = "category"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)
    slug: str = Field(unique=True, index=True)
    description: str | None = None

    packages: list["Package"] = Relationship(
        back_populates="categories", link_model=PackageCategoryLink
    )


class Package(SQLModel, table=True):
    """A catalogued package."""

    __tablename__ = "package"

    id: int | None = Field(default=None, primary_key=True)
    slug: str = Field(unique=True, index=True)
    name: str = Field(index=True)
    description: str = ""
    readme: str | None = None
    language: Language = Field(index=True)
    ecosystem: str = ""

    stars: int = Field(default=0, index=True)
    forks: int = 0
    downloads: int = 0
    license: str | None = Field(default=None, index=True)
    popularity_score: float = Field(default=0.0, index=True)

    github_url: str | None = None
    registry_url: str | None = None
    docs_url: str | None = None
    homepage_url: str | None = None
    install_command: str | None = None

    last_updated: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    embedding: bytes | None = Field(default=None, sa_column=Column(LargeBinary, nullable=True))
    embedding_model: str | None = None
    embedded_at: datetime | None = None

    categories: list[Category] = Relationship(
        back_populates="packages", link_model=PackageCategoryLink
    )
