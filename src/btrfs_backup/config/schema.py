"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults. All
configuration objects are frozen: a run resolves its configuration once and
passes it explicitly to every component.
"""

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional

from ..__util__ import DEFAULT_DATE_FORMAT, Side


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention windows in days, applied independently per side.

    Attributes:
        local_days: Maximum age of local snapshots
        remote_days: Maximum age of remote snapshots
    """

    local_days: int = 7
    remote_days: int = 30

    def days_for(self, side: Side) -> int:
        return self.local_days if side is Side.LOCAL else self.remote_days


@dataclass(frozen=True)
class SubvolumeConfig:
    """A protected subvolume.

    Attributes:
        name: Unique name, used as directory segment and snapshot prefix
        path: Source path of the btrfs subvolume
    """

    name: str
    path: Path


@dataclass(frozen=True)
class RemoteConfig:
    """Remote backup host configuration.

    Attributes:
        host: Host alias from the SSH client config
        path: Remote root directory holding one directory per subvolume
        ssh_user: Local user owning the SSH configuration (ssh runs as this user)
        ssh_config: Path to the SSH client config file
        timeout: SSH connect timeout in seconds
        strict_host_key_checking: Value for the StrictHostKeyChecking option
        command_timeout: Upper bound for short remote commands in seconds
    """

    host: str
    path: PurePosixPath
    ssh_user: Optional[str] = None
    ssh_config: Optional[Path] = None
    timeout: int = 10
    strict_host_key_checking: str = "accept-new"
    command_timeout: int = 60


@dataclass(frozen=True)
class LocalConfig:
    """Local host configuration.

    Attributes:
        btrfs_root: A path on the local btrfs filesystem
        snapshot_path: Local root holding one directory per subvolume
    """

    btrfs_root: Path = Path("/")
    snapshot_path: Path = Path("/snapshots")


@dataclass(frozen=True)
class GlobalConfig:
    """Global run settings.

    Attributes:
        date_format: strftime format of the timestamp in snapshot names
        log_file: Path to the persistent log file (None for stream only)
        pause_seconds: Pause between subvolumes
        transfer_timeout: Time limit of a single transfer attempt in seconds
        subvolume_timeout: Overall time limit for one subvolume in seconds
        parallel_subvolumes: Max concurrent subvolume backups
        lock_file: Run lock path (defaults to a file in the snapshot root)
    """

    date_format: str = DEFAULT_DATE_FORMAT
    log_file: Optional[Path] = Path("/var/log/btrfs-backup.log")
    pause_seconds: float = 2.0
    transfer_timeout: int = 3600
    subvolume_timeout: int = 14400
    parallel_subvolumes: int = 1
    lock_file: Optional[Path] = None


@dataclass(frozen=True)
class BackupConfig:
    """Root configuration object.

    Attributes:
        remote: Remote host settings
        local: Local host settings
        global_config: Run settings
        retention: Retention windows
        subvolumes: Ordered subvolumes to protect
    """

    remote: RemoteConfig
    local: LocalConfig = field(default_factory=LocalConfig)
    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    subvolumes: tuple[SubvolumeConfig, ...] = ()

    def get_lock_file(self) -> Path:
        return self.global_config.lock_file or (
            self.local.snapshot_path / ".btrfs-backup.lock"
        )
