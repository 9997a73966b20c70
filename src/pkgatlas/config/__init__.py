"""Config module exports."""

from pkgatlas.config.loader import load_config
from pkgatlas.config.models import (
    DatabaseConfig,
    EmbeddingConfig,
    FullTextConfig,
    LoggingConfig,
    PkgAtlasConfig,
    SearchConfig,
    ServerConfig,
    TimeoutsConfig,
)

__all__ = [
    "load_config",
    "PkgAtlasConfig",
    "DatabaseConfig",
    "EmbeddingConfig",
    "FullTextConfig",
    "LoggingConfig",
    "SearchConfig",
    "ServerConfig",
    "TimeoutsConfig",
]
