"""Configuration system for btrfs-backup.

This module provides TOML-based configuration loading, validation,
and schema definitions for scheduled backup runs.
"""

from .loader import ConfigError, find_config_file, load_config
from .schema import (
    BackupConfig,
    GlobalConfig,
    LocalConfig,
    RemoteConfig,
    RetentionPolicy,
    SubvolumeConfig,
)

__all__ = [
    "BackupConfig",
    "GlobalConfig",
    "LocalConfig",
    "RemoteConfig",
    "RetentionPolicy",
    "SubvolumeConfig",
    "load_config",
    "find_config_file",
    "ConfigError",
]
