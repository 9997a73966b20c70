"""Configuration loading with pydantic-settings.

Sources, highest precedence first:

1. keyword overrides passed to ``load_config``
2. environment variables (``PKGATLAS__FULLTEXT__HOST``)
3. the working-directory file (``./pkgatlas.yaml``) or an explicit path
4. the user file (``~/.config/pkgatlas/config.yaml``)
5. model defaults
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from pydantic_settings import (
    BaseSettings,
    InitSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

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
from pkgatlas.core.errors import ConfigError

GLOBAL_CONFIG_PATH = Path("~/.config/pkgatlas/config.yaml").expanduser()
LOCAL_CONFIG_NAME = "pkgatlas.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    """Mapping stored in ``path``; empty when the file is absent or blank."""
    if not path.is_file():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError.parse_error(str(path), str(e)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError.parse_error(str(path), "top-level value must be a mapping")
    return data


def _overlay(base: dict[str, Any], top: dict[str, Any]) -> dict[str, Any]:
    """Merge ``top`` onto ``base`` section by section."""
    merged = dict(base)
    for key, value in top.items():
        below = merged.get(key)
        merged[key] = _overlay(below, value) if isinstance(below, dict) and isinstance(value, dict) else value
    return merged


class _Settings(BaseSettings):
    """Root settings. Env vars: PKGATLAS__SERVER__PORT, PKGATLAS__SEARCH__KEYWORD_DEFAULT_LIMIT, ..."""

    model_config = SettingsConfigDict(
        env_prefix="PKGATLAS__",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    logging: LoggingConfig = LoggingConfig()
    server: ServerConfig = ServerConfig()
    database: DatabaseConfig = DatabaseConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
    fulltext: FullTextConfig = FullTextConfig()
    search: SearchConfig = SearchConfig()
    timeouts: TimeoutsConfig = TimeoutsConfig()


def _settings_for(file_values: dict[str, Any]) -> type[_Settings]:
    """Settings class whose lowest-precedence source is ``file_values``."""

    class _FileBackedSettings(_Settings):
        @classmethod
        def settings_customise_sources(
            cls,
            settings_cls: type[BaseSettings],
            init_settings: PydanticBaseSettingsSource,
            env_settings: PydanticBaseSettingsSource,
            dotenv_settings: PydanticBaseSettingsSource,  # noqa: ARG003
            file_secret_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        ) -> tuple[PydanticBaseSettingsSource, ...]:
            return (init_settings, env_settings, InitSettingsSource(settings_cls, file_values))

    return _FileBackedSettings


def load_config(config_path: Path | None = None, **overrides: Any) -> PkgAtlasConfig:
    """Resolve the service configuration.

    Args:
        config_path: Explicit YAML file used instead of ``./pkgatlas.yaml``.
            Unlike the implicit files it must exist.
        **overrides: Section values that win over every other source,
            e.g. ``server={"port": 4000}``.

    Raises:
        ConfigError: Missing explicit file, unparseable YAML or a value
            that fails validation.
    """
    if config_path is not None and not config_path.is_file():
        raise ConfigError.file_not_found(str(config_path))

    local_path = config_path if config_path is not None else Path.cwd() / LOCAL_CONFIG_NAME
    file_values = _overlay(_read_yaml(GLOBAL_CONFIG_PATH), _read_yaml(local_path))

    try:
        settings = _settings_for(file_values)(**overrides)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ConfigError.invalid_value(field, first.get("input"), first["msg"]) from e
    return PkgAtlasConfig.model_validate(settings.model_dump())
