"""Settings for the gallery, read from a YAML file and the environment.

Environment variables:
    GALLERY_DB_PATH: SQLite database file (default: data/gallery.db)
    REPLICATE_API_TOKEN: Token for the embedding API
    EMBEDDING_API_URL: Base URL of the embedding API
    EMBEDDING_MODEL_VERSION: Model version used for predictions
    EMBEDDING_POLL_ATTEMPTS: Status polls before a prediction times out (default: 30)
    EMBEDDING_POLL_INTERVAL: Seconds between polls (default: 1.0)
    EMBEDDING_MAX_DIMENSION: Downscale uploaded images to this size (default: 1024)
    GALLERY_BATCH_SIZE: Images embedded concurrently during recovery (default: 3)
    GALLERY_SEARCH_THRESHOLD: Minimum similarity for search results (default: 0.235)
    GALLERY_MOCK_EMBEDDINGS: Use the offline mock provider when set to 1/true/yes
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

import yaml

from .api.embedding_api import DEFAULT_BASE_URL, DEFAULT_MAX_DIMENSION, DEFAULT_MODEL_VERSION
from .core.errors import ConfigError
from .core.pipeline import DEFAULT_BATCH_SIZE
from .core.search import DEFAULT_THRESHOLD

ENV_VARS = {
    "db_path": "GALLERY_DB_PATH",
    "api_token": "REPLICATE_API_TOKEN",
    "api_url": "EMBEDDING_API_URL",
    "model_version": "EMBEDDING_MODEL_VERSION",
    "poll_attempts": "EMBEDDING_POLL_ATTEMPTS",
    "poll_interval": "EMBEDDING_POLL_INTERVAL",
    "max_image_dimension": "EMBEDDING_MAX_DIMENSION",
    "batch_size": "GALLERY_BATCH_SIZE",
    "search_threshold": "GALLERY_SEARCH_THRESHOLD",
    "mock_embeddings": "GALLERY_MOCK_EMBEDDINGS",
}

_TYPES = {
    "db_path": Path,
    "api_token": str,
    "api_url": str,
    "model_version": str,
    "poll_attempts": int,
    "poll_interval": float,
    "max_image_dimension": int,
    "batch_size": int,
    "search_threshold": float,
    "mock_embeddings": bool,
}

# Settings that may be explicitly unset
_OPTIONAL = {"api_token", "max_image_dimension"}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class Settings:
    db_path: Path = Path("data/gallery.db")
    api_token: Optional[str] = None
    api_url: str = DEFAULT_BASE_URL
    model_version: str = DEFAULT_MODEL_VERSION
    poll_attempts: int = 30
    poll_interval: float = 1.0
    max_image_dimension: Optional[int] = DEFAULT_MAX_DIMENSION
    batch_size: int = DEFAULT_BATCH_SIZE
    search_threshold: float = DEFAULT_THRESHOLD
    mock_embeddings: bool = False

    def __repr__(self) -> str:
        token = "***" if self.api_token else None
        return (
            f"Settings(db_path={str(self.db_path)!r}, api_url={self.api_url!r}, "
            f"api_token={token!r}, batch_size={self.batch_size}, mock_embeddings={self.mock_embeddings})"
        )

    def with_overrides(self, values: Mapping[str, object]) -> "Settings":
        """Return a copy with raw string or YAML values applied."""
        changes = {}
        for key, raw in values.items():
            if key not in _TYPES:
                raise ConfigError(f"Unknown setting: {key}")
            changes[key] = _coerce(key, raw)

        settings = replace(self, **changes)
        if settings.batch_size < 1:
            raise ConfigError(f"batch_size must be at least 1, got {settings.batch_size}")
        if settings.poll_attempts < 1:
            raise ConfigError(f"poll_attempts must be at least 1, got {settings.poll_attempts}")
        return settings

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["Settings"] = None,
    ) -> "Settings":
        environ = os.environ if environ is None else environ
        values = {key: environ[var] for key, var in ENV_VARS.items() if var in environ}
        return (base or cls()).with_overrides(values)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> "Settings":
        """Load settings from a YAML file whose keys are the field names."""
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(path) as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if config is None:
            return cls()
        if not isinstance(config, dict):
            raise ConfigError(f"Config file must contain a mapping: {config_path}")
        return cls().with_overrides(config)

    @classmethod
    def load(
        cls,
        config_path: Optional[str | Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """Defaults, then the YAML file (if any), then the environment."""
        base = cls.from_yaml(config_path) if config_path else cls()
        return cls.from_env(environ, base=base)


def _coerce(key: str, raw: object) -> object:
    kind = _TYPES[key]
    empty = raw is None or (isinstance(raw, str) and raw.strip().lower() in ("", "none", "null"))
    if empty and kind is not bool:
        if key in _OPTIONAL:
            return None
        raise ConfigError(f"{key} cannot be empty")

    try:
        if kind is bool:
            if isinstance(raw, bool):
                return raw
            text = "" if raw is None else str(raw).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            raise ValueError(f"not a boolean: {raw!r}")
        if kind is Path:
            return Path(str(raw))
        if kind is int and isinstance(raw, float) and not raw.is_integer():
            raise ValueError(f"not an integer: {raw!r}")
        return kind(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {e}") from e
