"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import tomllib
from pathlib import Path, PurePosixPath
from typing import Any

from ..__util__ import TimestampFormat
from .schema import (
    BackupConfig,
    GlobalConfig,
    LocalConfig,
    RemoteConfig,
    RetentionPolicy,
    SubvolumeConfig,
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "btrfs-backup" / "config.toml",
    Path("/etc/btrfs-backup/config.toml"),
]


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _optional_path(value: Any) -> Path | None:
    return Path(value) if value else None


def _require_int(
    data: dict[str, Any], key: str, default: int, section: str, minimum: int = 0
) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{section}.{key}' must be an integer")
    if value < minimum:
        raise ConfigError(f"'{section}.{key}' must be at least {minimum}")
    return value


def _parse_remote(data: dict[str, Any]) -> RemoteConfig:
    """Parse remote configuration from dict."""
    for key in ("host", "path"):
        if not data.get(key):
            raise ConfigError(f"Remote missing required '{key}' field")

    return RemoteConfig(
        host=data["host"],
        path=PurePosixPath(data["path"]),
        ssh_user=data.get("ssh_user"),
        ssh_config=_optional_path(data.get("ssh_config")),
        timeout=_require_int(data, "timeout", 10, "remote", minimum=1),
        strict_host_key_checking=data.get("strict_host_key_checking", "accept-new"),
        command_timeout=_require_int(data, "command_timeout", 60, "remote", minimum=1),
    )


def _parse_local(data: dict[str, Any]) -> LocalConfig:
    """Parse local configuration from dict."""
    return LocalConfig(
        btrfs_root=Path(data.get("btrfs_root", "/")),
        snapshot_path=Path(data.get("snapshot_path", "/snapshots")),
    )


def _parse_global(data: dict[str, Any]) -> GlobalConfig:
    """Parse global configuration from dict."""
    date_format = data.get("date_format", "%Y%m%d-%H%M%S")
    if not TimestampFormat(date_format).is_round_trip_safe():
        raise ConfigError(
            f"date_format '{date_format}' must keep second resolution and not contain '/'"
        )

    parallel = _require_int(data, "parallel_subvolumes", 1, "global", minimum=1)

    return GlobalConfig(
        date_format=date_format,
        log_file=_optional_path(data.get("log_file", "/var/log/btrfs-backup.log")),
        pause_seconds=float(data.get("pause_seconds", 2.0)),
        transfer_timeout=_require_int(data, "transfer_timeout", 3600, "global", minimum=1),
        subvolume_timeout=_require_int(data, "subvolume_timeout", 14400, "global", minimum=1),
        parallel_subvolumes=parallel,
        lock_file=_optional_path(data.get("lock_file")),
    )


def _parse_retention(data: dict[str, Any]) -> RetentionPolicy:
    """Parse retention configuration from dict."""
    return RetentionPolicy(
        local_days=_require_int(data, "local_days", 7, "retention"),
        remote_days=_require_int(data, "remote_days", 30, "retention"),
    )


def _parse_subvolume(data: dict[str, Any]) -> SubvolumeConfig:
    """Parse subvolume configuration from dict."""
    for key in ("name", "path"):
        if not data.get(key):
            raise ConfigError(f"Subvolume missing required '{key}' field")

    name = data["name"]
    if "/" in name or name in {".", ".."}:
        raise ConfigError(f"Invalid subvolume name: {name!r}")

    return SubvolumeConfig(name=name, path=Path(data["path"]))


def _validate_config(config: BackupConfig) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    if not config.subvolumes:
        warnings.append("No subvolumes configured")

    names = [s.name for s in config.subvolumes]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate subvolume names: {', '.join(duplicates)}")

    paths = [s.path for s in config.subvolumes]
    if len(paths) != len(set(paths)):
        warnings.append("Duplicate subvolume paths detected")

    if not config.remote.path.is_absolute():
        warnings.append(f"Remote path '{config.remote.path}' is not absolute")

    return warnings


def parse_config(data: dict[str, Any]) -> tuple[BackupConfig, list[str]]:
    """Build a validated configuration from already parsed TOML data."""
    if "remote" not in data:
        raise ConfigError("Missing required [remote] section")

    config = BackupConfig(
        remote=_parse_remote(data["remote"]),
        local=_parse_local(data.get("local", {})),
        global_config=_parse_global(data.get("global", {})),
        retention=_parse_retention(data.get("retention", {})),
        subvolumes=tuple(_parse_subvolume(s) for s in data.get("subvolumes", [])),
    )

    return config, _validate_config(config)


def load_config(path: Path | str) -> tuple[BackupConfig, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (BackupConfig object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    return parse_config(data)


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# btrfs-backup configuration

[remote]
host = "backup-server"          # Host alias from the SSH config
path = "/mnt/storage/snapshots"
# ssh_user = "alice"            # Run ssh as this user (owner of the SSH config)
# ssh_config = "/home/alice/.ssh/config"
timeout = 10
strict_host_key_checking = "accept-new"

[local]
btrfs_root = "/"
snapshot_path = "/snapshots"

[global]
date_format = "%Y%m%d-%H%M%S"
log_file = "/var/log/btrfs-backup.log"
pause_seconds = 2
parallel_subvolumes = 1

[retention]
local_days = 7
remote_days = 30

[[subvolumes]]
name = "Documents"
path = "/home/alice/Documents"

[[subvolumes]]
name = "Pictures"
path = "/home/alice/Pictures"
"""
