"""
Configuration package.

This package contains environment loading, validation, and the cycle parameter struct.
"""

from volumebot.config.config import ConfigError, CycleParameters, Settings, env_bool

__all__ = [
    "ConfigError",
    "CycleParameters",
    "Settings",
    "env_bool",
]
