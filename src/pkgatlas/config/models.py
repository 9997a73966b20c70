"""Typed configuration sections for the search service and its jobs.

Each section maps to a top-level YAML key and to environment variables
named ``PKGATLAS__<SECTION>__<KEY>``, for example::

    PKGATLAS__FULLTEXT__HOST=http://meili:7700
    PKGATLAS__SEARCH__HYBRID_SEMANTIC_SHARE=0.7
    PKGATLAS__LOGGING__LEVEL=DEBUG

``config.loader.load_config`` resolves the sources; the defaults below
apply when nothing else sets a key.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from pkgatlas.config.constants import DEFAULT_KEYWORD_WEIGHT

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
_STREAMS = ("stderr", "stdout")


class LogOutputConfig(BaseModel):
    """One log destination. Only settable from YAML, as a list under ``logging.outputs``."""

    format: Literal["json", "console"] = "console"
    # "stderr", "stdout" or an absolute file path
    destination: str = "stderr"
    # None uses logging.level
    level: LogLevel | None = None

    @field_validator("destination")
    @classmethod
    def _absolute_file_path(cls, value: str) -> str:
        if value in _STREAMS:
            return value
        expanded = Path(value).expanduser()
        if not expanded.is_absolute():
            raise ValueError(f"log file destination must be an absolute path, got {value!r}")
        return str(expanded)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        PKGATLAS__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every query and batch item.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class ServerConfig(BaseModel):
    """HTTP server configuration.

    Env vars:
        PKGATLAS__SERVER__HOST: Bind address (default: 127.0.0.1)
        PKGATLAS__SERVER__PORT: Port number (default: 3001)
    """

    host: str = Field(
        default="127.0.0.1",
        description="Bind address. Use 0.0.0.0 for network access.",
    )
    port: int = Field(default=3001, ge=0, le=65535, description="Server port.")


class DatabaseConfig(BaseModel):
    """Record store configuration.

    Env vars:
        PKGATLAS__DATABASE__PATH: SQLite database file
        PKGATLAS__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
    """

    path: str = Field(
        default="pkgatlas.db",
        description="SQLite database file holding the package catalog.",
    )
    busy_timeout_ms: int = Field(
        default=30000,
        description="How long to wait for locks held by import jobs (ms).",
    )


class EmbeddingConfig(BaseModel):
    """Embedding model configuration.

    Env vars:
        PKGATLAS__EMBEDDING__MODEL_NAME: fastembed model identifier
        PKGATLAS__EMBEDDING__DIMENSION: Expected vector length
        PKGATLAS__EMBEDDING__README_CHARS: Readme prefix included in embedding text
    """

    model_name: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="fastembed model. Changing it invalidates every stored vector.",
    )
    dimension: int = Field(
        default=384,
        description="Vector length produced by model_name.",
    )
    readme_chars: int = Field(
        default=500,
        description="Leading readme characters folded into the embedding text.",
    )
    progress_every: int = Field(
        default=10,
        description="Log batch progress every N items.",
    )
    threads: int | None = Field(
        default=None,
        description="ONNX runtime threads. None uses half the CPU count.",
    )

    @field_validator("dimension", "progress_every")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Must be >= 1, got {v}")
        return v


class FullTextConfig(BaseModel):
    """External full-text service (Meilisearch) configuration.

    Env vars:
        PKGATLAS__FULLTEXT__HOST: Service base URL
        PKGATLAS__FULLTEXT__API_KEY: Master or search key
        PKGATLAS__FULLTEXT__INDEX_NAME: Index uid
    """

    host: str = Field(
        default="http://localhost:7700",
        description="Meilisearch base URL.",
    )
    api_key: str | None = Field(
        default="MASTER_KEY_DEV_MODE",
        description="Sent as a bearer token. None disables the Authorization header.",
    )
    index_name: str = Field(
        default="packages",
        description="Index uid holding package documents.",
    )
    batch_size: int = Field(
        default=1000,
        description="Documents per add-documents request during a rebuild.",
    )
    one_typo_min_word_size: int = Field(
        default=4,
        description="Minimum word length before one typo is tolerated.",
    )
    two_typos_min_word_size: int = Field(
        default=8,
        description="Minimum word length before two typos are tolerated.",
    )

    @model_validator(mode="after")
    def validate_typo_sizes(self) -> "FullTextConfig":
        if self.two_typos_min_word_size < self.one_typo_min_word_size:
            raise ValueError("two_typos_min_word_size must be >= one_typo_min_word_size")
        return self


class SearchConfig(BaseModel):
    """Search defaults and hybrid fusion tuning.

    Env vars:
        PKGATLAS__SEARCH__SEMANTIC_MIN_SIMILARITY: Floor for the semantic route
        PKGATLAS__SEARCH__HYBRID_MIN_SIMILARITY: Floor for the semantic leg of hybrid
        PKGATLAS__SEARCH__HYBRID_SEMANTIC_SHARE: Share of limit requested from vector search
        PKGATLAS__SEARCH__HYBRID_KEYWORD_SHARE: Share of limit requested from keyword search
        PKGATLAS__SEARCH__HYBRID_KEYWORD_WEIGHT: Relevance assigned to keyword-only hits
    """

    semantic_min_similarity: float = Field(default=0.3, ge=0.0, le=1.0)
    hybrid_min_similarity: float = Field(default=0.2, ge=0.0, le=1.0)
    hybrid_semantic_share: float = Field(default=0.6, gt=0.0, le=1.0)
    hybrid_keyword_share: float = Field(default=0.4, gt=0.0, le=1.0)
    hybrid_keyword_weight: float = Field(
        default=DEFAULT_KEYWORD_WEIGHT,
        ge=0.0,
        le=1.0,
        description="Keyword hits sort below semantic hits scoring above this value.",
    )
    keyword_default_limit: int = Field(default=50, ge=1)
    semantic_default_limit: int = Field(default=20, ge=1)
    external_default_limit: int = Field(default=20, ge=1)


class TimeoutsConfig(BaseModel):
    """Timeouts for calls that leave the event loop.

    Env vars:
        PKGATLAS__TIMEOUTS__EMBEDDING_SEC: Per-text embedding call
        PKGATLAS__TIMEOUTS__FULLTEXT_SEC: Per HTTP call to the full-text service
    """

    embedding_sec: float = Field(
        default=30.0,
        description="Max time for a single embedding call.",
    )
    model_load_sec: float = Field(
        default=300.0,
        description="Max time for the first model load (includes download).",
    )
    fulltext_sec: float = Field(
        default=10.0,
        description="HTTP timeout for the full-text service.",
    )
    task_wait_sec: float = Field(
        default=60.0,
        description="Max wait for queued index tasks when a sync job waits.",
    )


class PkgAtlasConfig(BaseModel):
    """Root configuration for pkgatlas.

    All settings can be configured via:
    1. Environment variables: PKGATLAS__SECTION__KEY
    2. YAML config files (working directory or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    fulltext: FullTextConfig = Field(default_factory=FullTextConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
