"""Application configuration defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv

from docrag.errors import ConfigurationError
from docrag.utils.text import validate_chunking

DEFAULT_EMBEDDING_MODEL = "text-embedding-ada-002"
DEFAULT_EMBEDDING_DIMENSION = 1536
DEFAULT_CHAT_MODEL = "gpt-4-turbo"
EMBEDDING_PROVIDERS = ("openai", "local")
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}

# Environment variable -> AppConfig field.
ENV_VARS: dict[str, str] = {
    "DOCRAG_DB_PATH": "db_path",
    "DOCRAG_STORAGE_DIR": "storage_dir",
    "DOCRAG_EMBEDDING_PROVIDER": "embedding_provider",
    "OPENAI_EMBEDDING_MODEL": "embedding_model",
    "DOCRAG_EMBEDDING_DIMENSION": "embedding_dimension",
    "OPENAI_CHAT_MODEL": "chat_model",
    "DOCRAG_CHUNK_CHARS": "chunk_chars",
    "DOCRAG_CHUNK_OVERLAP": "overlap",
    "DOCRAG_TOP_K": "top_k",
    "OPENAI_CONTEXT_BUDGET": "context_budget",
    "OPENAI_MAX_OUTPUT_TOKENS": "max_output_tokens",
    "DOCRAG_REQUEST_TIMEOUT": "request_timeout",
    "DOCRAG_RETRY_ATTEMPTS": "retry_attempts",
    "DOCRAG_INDEX_NAME": "index_name",
    "LOG_LEVEL": "log_level",
}


@dataclass(slots=True)
class AppConfig:
    db_path: Path = Path("data/docrag.db")
    storage_dir: Path = Path("data/blobs")
    embedding_provider: str = "openai"
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimension: int = DEFAULT_EMBEDDING_DIMENSION
    chat_model: str = DEFAULT_CHAT_MODEL
    chunk_chars: int = 1000
    overlap: int = 200
    top_k: int = 5
    context_budget: int = 6000
    max_output_tokens: int = 2000
    request_timeout: float = 30.0
    retry_attempts: int = 3
    index_name: str = "documents-index"
    log_level: str = "info"

    def validate(self) -> "AppConfig":
        """Raise ``ConfigurationError`` for settings no pipeline can run with."""
        validate_chunking(self.chunk_chars, self.overlap)
        if self.embedding_provider not in EMBEDDING_PROVIDERS:
            raise ConfigurationError(
                f"Unknown embedding provider: {self.embedding_provider}. "
                f"Valid: {', '.join(EMBEDDING_PROVIDERS)}"
            )
        for name in ("embedding_model", "chat_model"):
            if not getattr(self, name):
                raise ConfigurationError(f"{name} is not configured")
        for name in (
            "embedding_dimension",
            "top_k",
            "context_budget",
            "max_output_tokens",
            "retry_attempts",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        if self.request_timeout <= 0:
            raise ConfigurationError(f"request_timeout must be positive, got {self.request_timeout}")
        if self.log_level.lower() not in LOG_LEVELS:
            raise ConfigurationError(
                f"Unknown log level: {self.log_level}. Valid: {', '.join(LOG_LEVELS)}"
            )
        return self

    def logging_level(self) -> int:
        return LOG_LEVELS.get(self.log_level.lower(), logging.INFO)

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def resolve_storage_dir(self, base_dir: Path | None = None) -> Path:
        if Path(self.storage_dir).is_absolute() or base_dir is None:
            return Path(self.storage_dir)
        return base_dir / self.storage_dir

    def with_overrides(self, values: Mapping[str, Any]) -> "AppConfig":
        """Return a copy with ``values`` coerced to each field's type."""
        return replace(self, **{key: _coerce(self, key, value) for key, value in values.items()})

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        """Build a config from ``DOCRAG_*``/``OPENAI_*`` variables (``.env`` included)."""
        if environ is None:
            load_dotenv()
            environ = os.environ
        values = {field: environ[var] for var, field in ENV_VARS.items() if environ.get(var)}
        return cls().with_overrides(values)


def _coerce(config: AppConfig, key: str, value: Any) -> Any:
    names = {f.name for f in fields(config)}
    if key not in names:
        raise ConfigurationError(f"Unknown configuration key: {key}")
    current = getattr(config, key)
    if value is None or isinstance(value, type(current)):
        return value if value is not None else current
    try:
        if isinstance(current, Path):
            return Path(value)
        if isinstance(current, bool):
            return str(value).lower() in {"1", "true", "yes", "on"}
        return type(current)(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid value for {key}: {value!r}") from exc
