"""Settings: defaults, then a YAML file, then ``SPACEATLAS_*`` environment variables."""
from __future__ import annotations
import os
from pathlib import Path
from typing import Dict, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

ENV_PREFIX = "SPACEATLAS_"
CONFIG_FILES = ["spaceatlas.yaml", "spaceatlas.yml"]
HOME_CONFIG_FILES = [".spaceatlas.yaml", ".spaceatlas.yml"]

LogLevelName = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ConfigError(Exception):
    def __init__(self, message: str, file_path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.file_path = file_path


def default_cache_dir() -> Path:
    return Path.home() / ".spaceatlas" / "cache"


class AtlasConfig(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    cache_dir: Path = Field(default_factory=default_cache_dir,
                            description="Directory holding cached scan results")
    cache_enabled: bool = Field(default=True, description="Read and write the result cache")
    progress_interval: float = Field(default=0.10, ge=0.0, le=10.0,
                                     description="Minimum seconds between progress updates")
    top_limit: int = Field(default=20, ge=1, le=1000,
                           description="Children listed per directory by the CLI")
    log_level: LogLevelName = "WARNING"

    @field_validator("cache_dir")
    @classmethod
    def _expand_cache_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, v: object) -> object:
        return v.upper().strip() if isinstance(v, str) else v


def discover_config_file() -> Optional[Path]:
    for name in CONFIG_FILES:
        p = Path(name)
        if p.is_file():
            return p
    try:
        home = Path.home()
    except (OSError, RuntimeError):
        return None
    for name in HOME_CONFIG_FILES:
        p = home / name
        if p.is_file():
            return p
    return None


def load_yaml(path: Union[str, Path]) -> Dict[str, object]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load {path}: {e}", str(path)) from e
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"{path} must contain a mapping", str(path))
    return content


def load_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, object]:
    environ = os.environ if environ is None else environ
    data: Dict[str, object] = {}
    for name in AtlasConfig.model_fields:
        value = environ.get(ENV_PREFIX + name.upper())
        if value is not None:
            data[name] = value
    return data


def load_config(path: Union[str, Path, None] = None,
                environ: Optional[Mapping[str, str]] = None) -> AtlasConfig:
    data: Dict[str, object] = {}
    if path is not None:
        data.update(load_yaml(path))
    data.update(load_env(environ))
    try:
        return AtlasConfig.model_validate(data)
    except ValidationError as e:
        where = f" in {path}" if path is not None else ""
        raise ConfigError(f"Invalid configuration{where}: {e}",
                          str(path) if path is not None else None) from e
