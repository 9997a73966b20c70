"""Core module exports."""

from pkgatlas.core.errors import (
    ConfigError,
    EmbeddingError,
    ErrorCode,
    FullTextError,
    InternalError,
    PkgAtlasError,
    QueryError,
    StoreError,
)
from pkgatlas.core.logging import (
    clear_request_id,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Errors
    "PkgAtlasError",
    "ConfigError",
    "EmbeddingError",
    "ErrorCode",
    "FullTextError",
    "InternalError",
    "QueryError",
    "StoreError",
    # Logging
    "clear_request_id",
    "configure_logging",
    "get_logger",
    "get_request_id",
    "set_request_id",
]
