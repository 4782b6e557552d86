"""Worker configuration module.

Settings are loaded from a JSON file into a :class:`WorkerConfig`
dataclass and may be overridden through ``SDR_WORKER_*`` environment
variables (e.g. ``SDR_WORKER_POLL_INTERVAL=1.5``).
"""

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from src.encoders import BINARY_BITS

ENV_PREFIX = "SDR_WORKER_"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class WorkerConfig:
    """Configuration for the experiment worker."""

    group_id: str = "sdr-cc"
    poll_interval: float = 0.5
    input_dir: Path = field(default_factory=lambda: Path("data/input"))
    result_dir: Path = field(default_factory=lambda: Path("data/results"))
    queue_dir: Path = field(default_factory=lambda: Path("data/queue"))
    bitmap_size: int = 1024
    strip_scale: int = 200
    binary_bits: int = BINARY_BITS
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            msg = f"poll_interval must be positive, got {self.poll_interval}"
            raise ValueError(msg)
        for name in ("bitmap_size", "strip_scale", "binary_bits"):
            if getattr(self, name) <= 0:
                msg = f"{name} must be positive, got {getattr(self, name)}"
                raise ValueError(msg)
        if not self.group_id:
            msg = "group_id must not be empty"
            raise ValueError(msg)
        if self.log_level.upper() not in _LOG_LEVELS:
            msg = f"Unknown log_level: {self.log_level!r}"
            raise ValueError(msg)

    @classmethod
    def from_file(cls, config_path: Path) -> "WorkerConfig":
        """Load a worker configuration from a JSON file.

        Raises:
            FileNotFoundError: If config file does not exist
            ValueError: If config file has invalid content
        """
        if not config_path.exists():
            msg = f"Worker config not found: {config_path}"
            raise FileNotFoundError(msg)

        with open(config_path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                msg = f"Worker config {config_path} is not valid JSON: {e}"
                raise ValueError(msg) from e

        if not isinstance(data, dict):
            msg = f"Worker config {config_path} must contain a JSON object"
            raise ValueError(msg)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkerConfig":
        """Create a WorkerConfig from a dictionary; unknown keys are ignored.

        Raises:
            ValueError: If a value has the wrong type or is out of range
        """
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name in data:
                kwargs[f.name] = _coerce(f.name, data[f.name])
        return cls(**kwargs)

    def apply_env(self, environ: Mapping[str, str] | None = None) -> "WorkerConfig":
        """Return a copy with ``SDR_WORKER_*`` overrides applied."""
        if environ is None:
            environ = os.environ

        overrides: dict[str, Any] = {}
        for f in fields(self):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is not None:
                overrides[f.name] = _coerce(f.name, raw)
        return replace(self, **overrides) if overrides else self


_FIELD_TYPES: dict[str, type] = {
    "group_id": str,
    "poll_interval": float,
    "input_dir": Path,
    "result_dir": Path,
    "queue_dir": Path,
    "bitmap_size": int,
    "strip_scale": int,
    "binary_bits": int,
    "log_level": str,
}


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw JSON or environment value to the field's type."""
    target = _FIELD_TYPES[name]
    if isinstance(value, bool):
        msg = f"{name} must be {target.__name__}, got {value!r}"
        raise ValueError(msg)
    try:
        if target is int:
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(value)
            return int(value)
        if target is float:
            return float(value)
        if target is Path:
            return Path(value)
        if not isinstance(value, str):
            raise ValueError(value)
        return value
    except (TypeError, ValueError):
        msg = f"{name} must be {target.__name__}, got {value!r}"
        raise ValueError(msg) from None
