"""Configuration loader — YAML file + env override, validated into ``Config``."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError

from agentstream.core.config.schema import Config
from agentstream.core.errors import ConfigError

CONFIG_ENV = "AGENTSTREAM_CONFIG"
DEFAULT_PATH = Path("config.yaml")


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    File lookup: ``config_path``, then ``$AGENTSTREAM_CONFIG``, then
    ``./config.yaml``. A missing file means defaults.

    Raises
    ------
    ConfigError
        The file is not a YAML mapping, or a value fails validation
        (e.g. an unknown provider in ``search.priority``).
    """
    path = _find_file(config_path)
    data = _read_yaml(path) if path else {}

    unknown = sorted(set(data) - set(Config.model_fields))
    if unknown:
        logger.warning(f"Ignoring unknown config sections in {path}: {unknown}")

    try:
        config = Config(**data)
    except ValidationError as e:
        source = path or "environment"
        raise ConfigError(f"Invalid configuration ({source}): {e}") from e

    logger.debug(
        f"Config loaded from {path or 'defaults'}: model={config.llm.model}, "
        f"search priority={config.search.priority}"
    )
    return config


def _find_file(config_path: str | Path | None) -> Path | None:
    if config_path:
        candidate, origin = Path(config_path), "argument"
    elif os.environ.get(CONFIG_ENV):
        candidate, origin = Path(os.environ[CONFIG_ENV]), CONFIG_ENV
    else:
        return DEFAULT_PATH if DEFAULT_PATH.exists() else None

    if not candidate.exists():
        logger.warning(f"Config file {candidate} ({origin}) not found, using defaults")
        return None
    return candidate


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data
