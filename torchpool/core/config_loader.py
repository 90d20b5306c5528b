"""Pool configuration loading and validation.

Settings come from three layers, later layers win:
- field defaults on PoolSettings
- an optional YAML file
- TORCHPOOL_* environment variables

Command templates may use ``{index}`` (1-based worker position), ``{count}``
(pool size) and, for the render command, ``{file}``.
"""
from __future__ import annotations

import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError

ENV_PREFIX = "TORCHPOOL_"


class PoolSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    worker_count: int = Field(1, ge=1)
    worker_command: List[str] = Field(
        default_factory=lambda: ["luajit", "TrainingScript.lua", "{index}", "{count}"], min_length=1
    )
    worker_env: Dict[str, str] = Field(default_factory=dict)
    library_dirs: List[str] = Field(default_factory=list)
    exchange_timeout_s: Optional[float] = Field(600.0, gt=0)
    parallel_broadcast: bool = True
    graceful_stop_s: float = Field(0.0, ge=0)
    checkpoint_filename: str = "model.t7"
    diagram_pattern: str = "*.dot"
    diagram_attempts: int = Field(100, ge=1)
    diagram_delay_s: float = Field(0.15, ge=0)
    render_command: List[str] = Field(
        default_factory=lambda: ["dot", "-Grankdir=LR", "{file}", "-Tsvg"], min_length=1
    )
    render_max_bytes: int = Field(10 * 1024 * 1024, gt=0)
    keep_script_folder: bool = False

    def worker_argv(self, index: int, count: int) -> List[str]:
        """Worker command for the 0-based ``index``; the worker sees 1-based positions."""
        return [part.replace("{index}", str(index + 1)).replace("{count}", str(count)) for part in self.worker_command]

    def render_argv(self, file: Union[str, Path]) -> List[str]:
        return [part.replace("{file}", str(file)) for part in self.render_command]


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top-level YAML value must be a mapping")
    return data


def _env_overrides(environ) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    raw = environ.get(ENV_PREFIX + "WORKER_COUNT")
    if raw:
        out["worker_count"] = raw
    raw = environ.get(ENV_PREFIX + "EXCHANGE_TIMEOUT_S")
    if raw:
        # "none" / "0" disable the per-exchange deadline
        out["exchange_timeout_s"] = None if raw.strip().lower() in ("none", "0", "off") else raw
    raw = environ.get(ENV_PREFIX + "WORKER_COMMAND")
    if raw:
        out["worker_command"] = shlex.split(raw)
    return out


def load_settings(path: Optional[Union[str, Path]] = None, environ=None, **overrides) -> PoolSettings:
    """Build PoolSettings from an optional YAML file, the environment and keyword overrides."""
    data: Dict[str, Any] = {}
    if path is not None:
        p = Path(path)
        if not p.exists():
            raise ConfigError(f"config file not found: {p}")
        data.update(_read_yaml(p))
    data.update(_env_overrides(os.environ if environ is None else environ))
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return PoolSettings(**data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e


__all__ = ["PoolSettings", "load_settings", "ConfigError"]
