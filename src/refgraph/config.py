"""Configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from refgraph.codec.markers import DEFAULT_PREFIX

# Environment variable overriding the configured marker prefix
PREFIX_ENV_VAR = "REFGRAPH_PREFIX"
DEFAULT_CONFIG_NAME = "refgraph.yaml"


class ConfigError(Exception):
    """Raised when a configuration file cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load config at {path}: {reason}")


@dataclass
class RefgraphConfig:
    """Codec and logging settings.

    Attributes:
        prefix: Marker key prefix. ``REFGRAPH_PREFIX`` overrides it; an
            empty value is a valid (empty) prefix.
        verbosity: Default console verbosity (0=WARNING, 1=INFO, 2+=DEBUG).
        log_dir: Directory for JSONL file logging, or None to disable it.
    """

    prefix: str = DEFAULT_PREFIX
    verbosity: int = 0
    log_dir: Path | None = None

    @property
    def effective_prefix(self) -> str:
        return os.environ.get(PREFIX_ENV_VAR, self.prefix)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefgraphConfig:
        """Create config from a dictionary, ignoring unknown keys.

        Raises:
            ValueError: If a known key has the wrong type.
        """
        prefix = data.get("prefix", DEFAULT_PREFIX)
        if not isinstance(prefix, str):
            raise ValueError(f"prefix must be a string, got {type(prefix).__name__}")
        verbosity = data.get("verbosity", 0)
        if isinstance(verbosity, bool) or not isinstance(verbosity, int):
            raise ValueError(f"verbosity must be an integer, got {type(verbosity).__name__}")
        log_dir = data.get("log_dir")
        return cls(
            prefix=prefix,
            verbosity=verbosity,
            log_dir=Path(log_dir) if log_dir else None,
        )


def load_config(path: Path | None = None) -> RefgraphConfig:
    """Load configuration from a YAML file.

    Args:
        path: Config file. If None, ``./refgraph.yaml`` is used when present,
            otherwise defaults are returned.

    Returns:
        RefgraphConfig instance.

    Raises:
        ConfigError: If an explicitly given file is missing or invalid.
    """
    if path is None:
        path = Path.cwd() / DEFAULT_CONFIG_NAME
        if not path.exists():
            return RefgraphConfig()
    elif not path.exists():
        raise ConfigError(path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)
        if data is None:
            return RefgraphConfig()
        if not isinstance(data, dict):
            raise ConfigError(path, "Top level must be a mapping")
        return RefgraphConfig.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(path, str(e)) from e
