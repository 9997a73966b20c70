"""SQLite engine for the package catalog.

The search server only reads the catalog while import and embedding jobs
write to it from other processes, so every connection runs in WAL mode
with a busy timeout instead of failing on the writer's lock.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import Engine, event
from sqlmodel import Session, SQLModel, create_engine

# Registers the table classes on SQLModel.metadata
from pkgatlas.catalog import models as _models  # noqa: F401

logger = structlog.get_logger()

DEFAULT_BUSY_TIMEOUT_MS = 30000

# Applied to every new DB-API connection, in order
_CONNECTION_PRAGMAS = (
    "journal_mode=WAL",
    "synchronous=NORMAL",
    "foreign_keys=ON",
)


def _unicode_lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


class Database:
    """Catalog database file and its connection pool."""

    def __init__(self, db_path: Path, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS) -> None:
        self.db_path = db_path
        self.busy_timeout_ms = int(busy_timeout_ms)
        if db_path.parent != Path():
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine: Engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        event.listen(self.engine, "connect", self._on_connect)

    def _on_connect(self, dbapi_conn: Any, _record: Any) -> None:
        # SQLite's built-in lower() folds ASCII only
        dbapi_conn.create_function("lower", 1, _unicode_lower, deterministic=True)
        cursor = dbapi_conn.cursor()
        try:
            cursor.execute(f"PRAGMA busy_timeout={self.busy_timeout_ms}")
            for pragma in _CONNECTION_PRAGMAS:
                cursor.execute(f"PRAGMA {pragma}")
        finally:
            cursor.close()

    def create_all(self) -> None:
        """Create the catalog tables that do not exist yet."""
        SQLModel.metadata.create_all(self.engine)
        logger.debug("catalog.schema_created", db_path=str(self.db_path))

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-side session; nothing is committed."""
        with Session(self.engine) as session:
            yield session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Write-side session: commit when the block exits cleanly."""
        with Session(self.engine) as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def dispose(self) -> None:
        self.engine.dispose()
