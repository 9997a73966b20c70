"""Package catalog - the system of record for packages and categories.

Rows live in SQLite through sqlmodel. Search components never touch
sessions directly; they go through `PackageStore`, which hands out frozen
`PackageRecord` snapshots.
"""

from pkgatlas.catalog.db import Database
from pkgatlas.catalog.models import Category, Language, Package, PackageCategoryLink
from pkgatlas.catalog.store import (
    CategoryRef,
    NewPackage,
    PackageRecord,
    PackageStore,
    decode_vector,
    encode_vector,
    slugify,
)

__all__ = [
    "Database",
    "PackageStore",
    # Table models
    "Category",
    "Package",
    "PackageCategoryLink",
    "Language",
    # Records
    "CategoryRef",
    "NewPackage",
    "PackageRecord",
    # Helpers
    "decode_vector",
    "encode_vector",
    "slugify",
]
