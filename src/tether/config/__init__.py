"""Configuration models and parser for tether.yaml."""

from tether.config.models import DedupeConfig, TetherConfig
from tether.config.parser import ConfigError, load_config

__all__ = [
    "ConfigError",
    "DedupeConfig",
    "TetherConfig",
    "load_config",
]
