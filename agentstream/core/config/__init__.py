"""Configuration module."""

from agentstream.core.config.loader import load_config
from agentstream.core.config.schema import (
    Config,
    RequestCredentials,
    RequestSettings,
)

__all__ = ["Config", "RequestCredentials", "RequestSettings", "load_config"]
