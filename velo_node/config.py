"""
Node configuration.

Values come from three layers, later ones winning:
1. Built-in defaults
2. configs/node.yml (or the path given with --config)
3. Environment variables (.env is loaded by the CLI)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger

from velo_layer.connectors.velobike_connector import DEFAULT_API_URL

from .batch_writer import DEFAULT_BATCH_SIZE, DEFAULT_QUEUE_SIZE


DEFAULT_CONFIG_PATH = Path("configs/node.yml")

# Default polling interval (seconds); also seeds first observations
DEFAULT_INTERVAL = 60.0


@dataclass
class NodeConfig:
    """Runtime settings for the parkings node."""
    db_url: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    interval_seconds: float = DEFAULT_INTERVAL
    default_increment_seconds: Optional[float] = None
    batch_size: int = DEFAULT_BATCH_SIZE
    queue_size: int = DEFAULT_QUEUE_SIZE
    request_timeout: float = 30.0
    storage_timeout: Optional[float] = 300.0
    state_max_idle_seconds: Optional[float] = None

    @property
    def default_increment(self) -> float:
        """Seconds credited on first sighting (the nominal polling interval by default)."""
        if self.default_increment_seconds is not None:
            return self.default_increment_seconds
        return self.interval_seconds

    def validate(self) -> None:
        """
        Raises:
            ValueError: if a size or interval is not positive
        """
        for name in ("interval_seconds", "batch_size", "queue_size", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("default_increment_seconds", "storage_timeout", "state_max_idle_seconds"):
            val = getattr(self, name)
            if val is not None and val < 0:
                raise ValueError(f"{name} must not be negative, got {val}")


# env var -> (field, parser)
ENV_OVERRIDES = {
    "VELO_DB_URL": ("db_url", str),
    "VELOBIKE_API_URL": ("api_url", str),
    "RUN_INTERVAL_SECONDS": ("interval_seconds", float),
    "VELO_DEFAULT_INCREMENT": ("default_increment_seconds", float),
    "VELO_BATCH_SIZE": ("batch_size", int),
    "VELO_QUEUE_SIZE": ("queue_size", int),
    "VELO_REQUEST_TIMEOUT": ("request_timeout", float),
    "VELO_STORAGE_TIMEOUT": ("storage_timeout", float),
    "VELO_STATE_MAX_IDLE": ("state_max_idle_seconds", float),
}


FIELD_PARSERS = {field_name: parser for field_name, parser in ENV_OVERRIDES.values()}


def _coerce(name: str, value: Any) -> Any:
    if value is None:
        return None
    return FIELD_PARSERS[name](value)


def load_config(config_path: Optional[Path] = None) -> NodeConfig:
    """
    Load node configuration from YAML and environment.

    Args:
        config_path: Path to node.yml (default: configs/node.yml)

    Returns:
        Validated NodeConfig

    Raises:
        ValueError: on invalid values
    """
    config = NodeConfig()
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

        if not isinstance(raw, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        node_section = raw.get("node", raw) or {}
        if not isinstance(node_section, dict):
            raise ValueError(f"'node' section in {path} must be a mapping")
        known = {f.name for f in fields(NodeConfig)}
        for key, value in node_section.items():
            if key not in known:
                logger.warning(f"Unknown config key in {path}: {key}")
                continue
            setattr(config, key, _coerce(key, value))
        logger.debug(f"Loaded config from {path}")
    elif config_path:
        logger.warning(f"Config file not found: {path}, using defaults")

    for env_key, (field_name, parser) in ENV_OVERRIDES.items():
        val = os.environ.get(env_key)
        if val is None or val == "":
            continue
        try:
            setattr(config, field_name, parser(val))
        except ValueError:
            raise ValueError(f"Invalid value for {env_key}: {val!r}")

    config.validate()
    return config
