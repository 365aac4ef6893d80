"""Pytest configuration and shared fixtures."""

import itertools
import shutil
import subprocess
from datetime import datetime, timedelta
from pathlib import Path, PurePosixPath

import pytest

from btrfs_backup.__util__ import Side, TimestampFormat
from btrfs_backup.config import (
    BackupConfig,
    GlobalConfig,
    LocalConfig,
    RemoteConfig,
    RetentionPolicy,
    SubvolumeConfig,
)
from btrfs_backup.endpoint import Endpoint, LocalEndpoint

NOW = datetime(2026, 10, 18, 12, 0, 0)

# The fake send stage writes the snapshot name, the fake receive stage
# creates a directory of that name under its destination.
SEND_OK = 'printf "%s" "$1"'
SEND_FAIL = 'echo "ERROR: send failed" >&2; exit 1'
RECEIVE_OK = 'name=$(cat) && mkdir -- "$1/$name"'
RECEIVE_FAIL = 'cat >/dev/null; echo "ERROR: receive failed"; exit 1'
RECEIVE_PARTIAL = 'name=$(cat) && mkdir -- "$1/$name"; echo "ERROR: short stream"; exit 1'
RECEIVE_HANG = "cat >/dev/null; exec sleep 30"


class FakeLocalEndpoint(LocalEndpoint):
    """LocalEndpoint backed by plain directories instead of btrfs subvolumes."""

    def __init__(self, config) -> None:
        super().__init__(config)
        self.plain_dirs = set()
        self.undeletable = set()
        self.fail_create = False
        self.fail_verify = False
        self.send_scripts = []
        self.send_calls = []
        self.prerequisite_checks = 0

    def check_prerequisites(self) -> None:
        self.prerequisite_checks += 1

    def is_subvolume(self, path, timeout=None) -> bool:
        path = Path(path)
        if self.fail_verify and self.root in path.parents:
            return False
        return path.is_dir() and path not in self.plain_dirs

    def create_snapshot(self, source, destination, timeout=None) -> None:
        if self.fail_create:
            raise subprocess.CalledProcessError(1, ["btrfs"], b"", b"ERROR: no space")
        Path(destination).mkdir()

    def send(self, snapshot_path, parent_path=None):
        self.send_calls.append((Path(snapshot_path), parent_path))
        script = self.send_scripts.pop(0) if self.send_scripts else SEND_OK
        return subprocess.Popen(
            ["sh", "-c", script, "send", Path(snapshot_path).name],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

    def _delete_subvolume(self, location) -> None:
        if Path(location).name in self.undeletable:
            raise subprocess.CalledProcessError(1, ["btrfs", "subvolume", "delete"])
        shutil.rmtree(location)


class FakeRemoteEndpoint(Endpoint):
    """Remote endpoint backed by a local directory."""

    side = Side.REMOTE

    def __init__(self, config) -> None:
        super().__init__(Path(config.remote.path))
        self.hostname = config.remote.host
        self.reachable = True
        self.can_mkdir = True
        self.has_btrfs = True
        self.passwordless = True
        self.fs_type = "btrfs"
        self.undeletable = set()
        self.receive_scripts = []
        self.receive_calls = []
        self.config_checks = 0

    def check_config(self) -> None:
        self.config_checks += 1

    def echo(self, message: str) -> bool:
        return self.reachable

    def connection_diagnostics(self, lines=20) -> list[str]:
        return ["debug1: Connecting to backup-host port 22."]

    def makedirs(self, path, chown=False) -> bool:
        if not self.can_mkdir:
            return False
        Path(path).mkdir(parents=True, exist_ok=True)
        return True

    def which(self, command: str) -> bool:
        return self.has_btrfs

    def has_passwordless_btrfs(self) -> bool:
        return self.passwordless

    def filesystem_type(self, path):
        return self.fs_type

    def receive_command(self, destination) -> list[str]:
        return ["ssh", self.hostname, f"sudo btrfs receive {destination}"]

    def receive(self, destination, stdin):
        self.receive_calls.append(Path(destination))
        script = self.receive_scripts.pop(0) if self.receive_scripts else RECEIVE_OK
        return subprocess.Popen(
            ["sh", "-c", script, "receive", str(destination)],
            stdin=stdin,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )

    def _listdir(self, location) -> list[str]:
        return [p.name for p in Path(location).iterdir() if p.is_dir()]

    def _is_dir(self, location) -> bool:
        return Path(location).is_dir()

    def _delete_subvolume(self, location) -> None:
        if Path(location).name in self.undeletable:
            raise subprocess.CalledProcessError(1, "sudo btrfs subvolume delete")
        shutil.rmtree(location)


def make_config(tmp_path, names=("Documents",), local_days=7, remote_days=30, **global_kwargs):
    """Build a configuration rooted in ``tmp_path`` with source dirs created."""
    subvolumes = []
    for name in names:
        source = tmp_path / "home" / name
        source.mkdir(parents=True, exist_ok=True)
        subvolumes.append(SubvolumeConfig(name=name, path=source))

    global_kwargs.setdefault("pause_seconds", 0)
    global_kwargs.setdefault("log_file", None)
    return BackupConfig(
        remote=RemoteConfig(host="backup-host", path=PurePosixPath(tmp_path / "remote")),
        local=LocalConfig(btrfs_root=tmp_path, snapshot_path=tmp_path / "snapshots"),
        global_config=GlobalConfig(**global_kwargs),
        retention=RetentionPolicy(local_days=local_days, remote_days=remote_days),
        subvolumes=tuple(subvolumes),
    )


def ticking_clock(step_seconds: float):
    """Return a clock starting at NOW that advances by ``step_seconds`` per call."""
    calls = itertools.count()
    return lambda: NOW + timedelta(seconds=next(calls) * step_seconds)


def add_snapshot(endpoint, name: str, days_ago: float) -> Path:
    """Create a snapshot directory on ``endpoint`` aged ``days_ago`` relative to NOW."""
    stamp = TimestampFormat().snapshot_name(name, NOW - timedelta(days=days_ago))
    path = Path(endpoint.snapshot_dir(name)) / stamp
    path.mkdir(parents=True)
    return path


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def local(config):
    return FakeLocalEndpoint(config)


@pytest.fixture
def remote(config):
    remote = FakeRemoteEndpoint(config)
    Path(remote.root).mkdir(parents=True)
    return remote


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[remote]
host = "target"
path = "/mnt/storage/snapshots"
ssh_user = "alice"
ssh_config = "/home/alice/.ssh/config"
timeout = 15
strict_host_key_checking = "yes"

[local]
btrfs_root = "/"
snapshot_path = "/snapshots"

[global]
date_format = "%Y%m%d-%H%M%S"
log_file = "/var/log/btrfs-backup.log"
pause_seconds = 1
parallel_subvolumes = 2

[retention]
local_days = 5
remote_days = 60

[[subvolumes]]
name = "Documents"
path = "/home/alice/Documents"

[[subvolumes]]
name = "Pictures"
path = "/home/alice/Pictures"
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[remote]
host = "target"
path = "/backups"

[[subvolumes]]
name = "home"
path = "/home"
"""


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    """Create a temporary config file with minimal content."""
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path
