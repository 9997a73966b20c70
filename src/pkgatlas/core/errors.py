"""pkgatlas error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Embedding
- 4xxx: Full-text service
- 5xxx: Query / record store
- 9xxx: Internal
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_FILE_NOT_FOUND = 2004

    # Embedding (3xxx)
    EMBEDDING_MODEL_LOAD_FAILED = 3001
    EMBEDDING_FAILED = 3002
    EMBEDDING_TIMEOUT = 3003
    EMBEDDING_DIMENSION_MISMATCH = 3004

    # Full-text service (4xxx)
    FULLTEXT_UNAVAILABLE = 4001
    FULLTEXT_REQUEST_FAILED = 4002
    FULLTEXT_TIMEOUT = 4003
    FULLTEXT_TASK_FAILED = 4004

    # Query / store (5xxx)
    QUERY_INVALID_PARAMETER = 5001
    QUERY_MISSING_TEXT = 5002
    STORE_UNAVAILABLE = 5101

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(frozen=True, slots=True)
class PkgAtlasError(Exception):
    """Base error with structured context for JSON responses."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'FULLTEXT_UNAVAILABLE')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(PkgAtlasError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class EmbeddingError(PkgAtlasError):
    """Embedding model errors.

    A load failure is fatal: every later call would fail the same way.
    """

    @property
    def is_fatal(self) -> bool:
        return self.code in (
            ErrorCode.EMBEDDING_MODEL_LOAD_FAILED,
            ErrorCode.EMBEDDING_DIMENSION_MISMATCH,
        )

    @classmethod
    def model_load_failed(cls, model_name: str, reason: str) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_MODEL_LOAD_FAILED,
            message=f"Failed to load embedding model {model_name}: {reason}",
            details={"model": model_name, "reason": reason},
        )

    @classmethod
    def embed_failed(cls, reason: str) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_FAILED,
            message=f"Embedding failed: {reason}",
            details={"reason": reason},
        )

    @classmethod
    def timeout(cls, seconds: float) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_TIMEOUT,
            message=f"Embedding call exceeded {seconds}s",
            retryable=True,
            details={"timeout_sec": seconds},
        )

    @classmethod
    def dimension_mismatch(cls, expected: int, actual: int) -> "EmbeddingError":
        return cls(
            code=ErrorCode.EMBEDDING_DIMENSION_MISMATCH,
            message=f"Model produced {actual}-dim vectors, expected {expected}",
            details={"expected": expected, "actual": actual},
        )


class FullTextError(PkgAtlasError):
    """Errors talking to the external full-text service."""

    @classmethod
    def unavailable(cls, host: str, reason: str) -> "FullTextError":
        return cls(
            code=ErrorCode.FULLTEXT_UNAVAILABLE,
            message=f"Full-text service at {host} is unavailable: {reason}",
            retryable=True,
            details={"host": host, "reason": reason},
        )

    @classmethod
    def request_failed(cls, path: str, status: int, reason: str) -> "FullTextError":
        return cls(
            code=ErrorCode.FULLTEXT_REQUEST_FAILED,
            message=f"Full-text request {path} failed with {status}: {reason}",
            details={"path": path, "status": status, "reason": reason},
        )

    @classmethod
    def timeout(cls, path: str, seconds: float) -> "FullTextError":
        return cls(
            code=ErrorCode.FULLTEXT_TIMEOUT,
            message=f"Full-text request {path} exceeded {seconds}s",
            retryable=True,
            details={"path": path, "timeout_sec": seconds},
        )

    @classmethod
    def task_failed(cls, task_uid: int, reason: str) -> "FullTextError":
        return cls(
            code=ErrorCode.FULLTEXT_TASK_FAILED,
            message=f"Index task {task_uid} failed: {reason}",
            details={"task_uid": task_uid, "reason": reason},
        )


class QueryError(PkgAtlasError):
    """Malformed search requests."""

    @classmethod
    def invalid_parameter(cls, name: str, value: Any, reason: str) -> "QueryError":
        return cls(
            code=ErrorCode.QUERY_INVALID_PARAMETER,
            message=f"Invalid value for '{name}': {reason}",
            details={"parameter": name, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_query(cls) -> "QueryError":
        return cls(
            code=ErrorCode.QUERY_MISSING_TEXT,
            message='Query parameter "q" is required',
            details={"parameter": "q"},
        )


class StoreError(PkgAtlasError):
    """Record store failures."""

    @classmethod
    def store_unavailable(cls, reason: str) -> "StoreError":
        return cls(
            code=ErrorCode.STORE_UNAVAILABLE,
            message=f"Record store unavailable: {reason}",
            retryable=True,
            details={"reason": reason},
        )


class InternalError(PkgAtlasError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
