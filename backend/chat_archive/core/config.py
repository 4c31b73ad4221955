"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "CHARC_"
DEFAULT_CONFIG_PATH = Path("~/.config/chat-archive/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "export_file"): "export_file",
    ("storage", "export_dir"): "export_dir",
    ("embedding", "provider"): "embedding_provider",
    ("embedding", "model"): "embedding_model",
    ("embedding", "dimension"): "embedding_dim",
    ("embedding", "api_base"): "embedding_api_base",
    ("embedding", "api_key"): "embedding_api_key",
    ("fetch", "method"): "fetch_method",
    ("fetch", "page_size"): "fetch_page_size",
    ("fetch", "batch_size"): "export_batch_size",
    ("takeout", "file_max_size"): "takeout_file_max_size",
    ("takeout", "finish_retries"): "takeout_finish_retries",
    ("takeout", "finish_wait"): "takeout_finish_wait",
    ("retry", "max_attempts"): "retry_max_attempts",
    ("retry", "base_delay"): "retry_base_delay",
    ("retry", "max_delay"): "retry_max_delay",
    ("embed", "batch_size"): "embed_batch_size",
    ("embed", "concurrency"): "embed_concurrency",
    ("search", "overfetch"): "search_overfetch",
    ("search", "fusion_bonus"): "search_fusion_bonus",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".chat-archive" / "archive.db")
    export_file: Path | None = None
    export_dir: Path = Field(default=Path.home() / ".chat-archive" / "exports")

    embedding_provider: Literal["hashed", "openai", "ollama"] = "hashed"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = Field(default=1536, gt=0)
    embedding_api_base: str | None = None
    embedding_api_key: str | None = None

    fetch_method: Literal["takeout", "getMessage"] = "takeout"
    fetch_page_size: int = Field(default=100, ge=1, le=100)
    export_batch_size: int = Field(default=200, ge=1)

    takeout_file_max_size: int = 1024 * 1024 * 1024
    takeout_finish_retries: int = Field(default=3, ge=0)
    takeout_finish_wait: float = Field(default=30.0, ge=0)

    retry_max_attempts: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)

    embed_batch_size: int = Field(default=1000, ge=1, le=10000)
    embed_concurrency: int = Field(default=4, ge=1, le=10)

    search_overfetch: int = Field(default=1000, ge=1)
    search_fusion_bonus: float = 0.3

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "export_file", "export_dir", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path | None:
        if value is None or value == "":
            return None
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("path settings must be a path or string")

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
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with CHARC_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
