"""Configuration helpers for digestcat."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .hashing import DEFAULT_ALGORITHMS, DEFAULT_CHUNK_SIZE, check_algorithms

DEFAULT_CONFIG_PATH = Path("digestcat.yml")


class ConfigError(ValueError):
    """Raised when a configuration file cannot be parsed or validated."""


class AppConfig(BaseModel):
    """Application level configuration."""

    db_path: Path = Field(default=Path("digestcat.db"))
    digest_algorithms: List[str] = Field(default_factory=lambda: list(DEFAULT_ALGORITHMS))
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)
    workers: int = Field(default=1, ge=1)

    @field_validator("digest_algorithms")
    @classmethod
    def validate_algorithms(cls, value: List[str]) -> List[str]:
        return list(check_algorithms(value))


def load_config(path: Path) -> AppConfig:
    """Load configuration from a YAML file; a missing file yields defaults."""

    data: Dict[str, Any] = {}
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration in {path} must be a mapping")
    try:
        return AppConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc
