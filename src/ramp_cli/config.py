"""Build-context configuration in .dockramp/config.yaml."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from ramp_tarsum import DEFAULT_CHUNK_SIZE, UnsupportedPolicyVersion, get_version

CONFIG_DIR = ".dockramp"
CONFIG_FILE = "config.yaml"
CACHE_ENV_VAR = "DOCKRAMP_CACHE"
DEFAULT_CACHE_PATH = "~/.dockrampcache"


class ConfigError(RuntimeError):
    """Raised when the build configuration is invalid."""


class TarsumConfig(BaseModel):
    """Digest settings used for COPY/EXTRACT cache keys."""

    version: str = "1"
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)

    @field_validator("version", mode="before")
    @classmethod
    def validate_version(cls, v: Any) -> str:
        try:
            return get_version(v).number
        except UnsupportedPolicyVersion as exc:
            raise ValueError(str(exc)) from exc


class CacheConfig(BaseModel):
    """Location of the local build cache file."""

    path: str = DEFAULT_CACHE_PATH


class ArchiveConfig(BaseModel):
    """Patterns excluded when archiving COPY sources."""

    exclude: list[str] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    level: str = "WARNING"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown logging level: {v!r}")
        return level


class DockrampConfig(BaseModel):
    """Top-level configuration."""

    tarsum: TarsumConfig = Field(default_factory=TarsumConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def cache_path(self) -> Path:
        """Resolved cache file path; ``$DOCKRAMP_CACHE`` takes precedence."""
        override = os.environ.get(CACHE_ENV_VAR, "").strip()
        return Path(override or self.cache.path).expanduser()


def config_path(context_dir: Path) -> Path:
    return context_dir / CONFIG_DIR / CONFIG_FILE


def load_config(context_dir: Path) -> DockrampConfig:
    """Load configuration for a build context, defaults when absent."""
    path = config_path(context_dir)
    if not path.exists():
        return DockrampConfig()

    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.load(handle) or {}
    except (OSError, YAMLError) as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigError(f"Invalid configuration format in {path}: expected a mapping")

    known = {key: payload[key] for key in DockrampConfig.model_fields if key in payload}
    try:
        return DockrampConfig.model_validate(known)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc


def save_config(context_dir: Path, config: DockrampConfig) -> Path:
    """Persist configuration, preserving unrelated top-level sections."""
    path = config_path(context_dir)
    path.parent.mkdir(parents=True, exist_ok=True)

    yaml = YAML()
    yaml.preserve_quotes = True

    payload: Any = {}
    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.load(handle) or {}
    if not isinstance(payload, dict):
        payload = {}

    for key, value in config.model_dump(mode="json").items():
        payload[key] = value

    with path.open("w", encoding="utf-8") as handle:
        yaml.dump(payload, handle)
    return path
