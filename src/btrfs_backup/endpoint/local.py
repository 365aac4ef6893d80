# pyright: standard

"""btrfs-backup: btrfs_backup/endpoint/local.py
Create commands with local endpoints.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path

from .. import __util__
from ..__util__ import PreconditionError, Side
from .common import Endpoint

logger = logging.getLogger(__name__)


class LocalEndpoint(Endpoint):
    """Snapshot store on this host, driven through btrfs-progs."""

    side = Side.LOCAL

    def __init__(self, config) -> None:
        """
        Initialize the LocalEndpoint from the run configuration.

        Args:
            config (BackupConfig): Resolved run configuration.
        """
        super().__init__(Path(config.local.snapshot_path))
        self.btrfs_root = Path(config.local.btrfs_root)

    def check_prerequisites(self) -> None:
        """Verify root privileges and a usable local btrfs toolchain."""
        if os.geteuid() != 0:
            raise PreconditionError("This program must be run as root")

        if shutil.which("btrfs") is None:
            raise PreconditionError("btrfs command not found")

        result = self._exec_command(["btrfs", "filesystem", "show", str(self.btrfs_root)])
        if result.returncode != 0:
            raise PreconditionError(f"{self.btrfs_root} is not a btrfs filesystem")

    def is_subvolume(self, path, timeout=None) -> bool:
        """Check that ``path`` is the root of a btrfs subvolume."""
        path = Path(path)
        if not path.is_dir():
            return False
        result = self._exec_command(
            ["btrfs", "subvolume", "show", str(path)], timeout=timeout
        )
        return result.returncode == 0

    def make_snapshot_dir(self, subvolume_name: str) -> Path:
        directory = self.snapshot_dir(subvolume_name)
        if not directory.is_dir():
            logger.info("Creating snapshot directory: %s", directory)
            directory.mkdir(parents=True, exist_ok=True)
        return directory

    def create_snapshot(self, source, destination, timeout=None) -> None:
        """Create a read-only snapshot of ``source`` at ``destination``.

        Raises:
            CalledProcessError: If btrfs reports a failure
        """
        cmd = ["btrfs", "subvolume", "snapshot", "-r", str(source), str(destination)]
        logger.info("Attempting: %s", " ".join(cmd))
        result = self._exec_command(cmd, timeout=timeout)
        if result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode, cmd, result.stdout, result.stderr
            )

    def send(self, snapshot_path, parent_path=None):
        """Call 'btrfs send' for the given snapshot and return its Popen object."""
        cmd = ["btrfs", "send"]
        if parent_path is not None:
            cmd += ["-p", str(parent_path)]
        cmd += [str(snapshot_path)]
        return self._exec_command(
            cmd, method="Popen", stdout=subprocess.PIPE, stderr=subprocess.PIPE
        )

    def _exec_command(self, command, method="run", **kwargs):
        return __util__.exec_subprocess(command, method=method, **kwargs)

    def _listdir(self, location) -> list[str]:
        return [item.name for item in Path(location).iterdir() if item.is_dir()]

    def _is_dir(self, location) -> bool:
        return Path(location).is_dir()

    def _delete_subvolume(self, location) -> None:
        cmd = ["btrfs", "subvolume", "delete", str(location)]
        result = self._exec_command(cmd)
        if result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode, cmd, result.stdout, result.stderr
            )
