"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "PETCTX_"
DEFAULT_CONFIG_PATH = Path("~/.config/pet-context/config.yaml")
PACKAGED_CORPUS_PATH = Path(__file__).resolve().parents[1] / "data" / "health_docs.json"

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "vector_backend"): "vector_backend",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "url"): "embedding_url",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "timeout"): "embedding_timeout",
    ("corpus", "path"): "corpus_path",
    ("corpus", "top_n"): "corpus_top_n",
    ("retrieval", "vector_top_k"): "vector_top_k",
    ("retrieval", "vector_min_score"): "vector_min_score",
    ("retrieval", "deadline"): "retrieval_deadline",
    ("retrieval", "source_timeout"): "source_timeout",
    ("retrieval", "max_items"): "max_context_items",
    ("retrieval", "snippet_chars"): "snippet_chars",
    ("retrieval", "max_chars"): "max_context_chars",
    ("sources", "naver", "client_id"): "naver_client_id",
    ("sources", "naver", "client_secret"): "naver_client_secret",
    ("sync", "workers"): "sync_workers",
    ("sync", "max_attempts"): "sync_max_attempts",
    ("sync", "backoff_seconds"): "sync_backoff_seconds",
    ("sync", "consumer_group"): "consumer_group",
}


class HtmlSourceConfig(BaseModel):
    """A crawled search page registered as an external retrieval source."""

    name: str
    url_template: str
    title_xpath: str
    summary_xpath: str
    timeout: float | None = None


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".pet-context" / "pc.db")
    vector_backend: Literal["sqlite", "memory"] = "sqlite"
    embedding_backend: Literal["hashed", "http"] = "hashed"
    embedding_url: str | None = None
    embedding_dim: int = Field(default=1024, ge=1)
    embedding_timeout: float = 3.0
    corpus_path: Path | None = PACKAGED_CORPUS_PATH
    corpus_top_n: int = Field(default=5, ge=1)
    vector_top_k: int = Field(default=3, ge=1)
    vector_min_score: float = Field(default=0.0, ge=0.0, le=1.0)
    retrieval_deadline: float = Field(default=5.0, gt=0)
    source_timeout: float = Field(default=3.0, gt=0)
    max_context_items: int = Field(default=8, ge=1)
    snippet_chars: int = Field(default=400, ge=20)
    max_context_chars: int = Field(default=6000, ge=200)
    naver_client_id: str | None = None
    naver_client_secret: str | None = None
    html_sources: list[HtmlSourceConfig] = Field(default_factory=list)
    sync_workers: int = Field(default=3, ge=1)
    sync_max_attempts: int = Field(default=3, ge=1)
    sync_backoff_seconds: float = Field(default=1.0, ge=0)
    consumer_group: str = "healthcare-group"

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise ValueError("db_path must be a path or string")

    @field_validator("corpus_path", mode="before")
    @classmethod
    def _expand_corpus_path(cls, value: Any) -> Path | None:
        if value in (None, ""):
            return None
        if isinstance(value, (str, Path)):
            return Path(value).expanduser()
        raise ValueError("corpus_path must be a path or string")

    @property
    def naver_enabled(self) -> bool:
        return bool(self.naver_client_id and self.naver_client_secret)

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if key == "html_sources" and not prefix:
            flat["html_sources"] = value or []
        elif isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with PETCTX_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name == "html_sources":
            continue
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["HtmlSourceConfig", "Settings", "get_settings"]
