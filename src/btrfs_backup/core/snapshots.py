"""Snapshot creation, verification and enumeration."""

import logging
import subprocess
from datetime import datetime

from ..__util__ import (
    Side,
    Snapshot,
    SnapshotError,
    SnapshotFailure,
    SubvolumeSourceError,
    TimestampFormat,
)

logger = logging.getLogger(__name__)

# Snapshots of one subvolume on one side, oldest first
SnapshotHistory = list[Snapshot]


class SnapshotManager:
    """Creates read-only snapshots and lists existing ones per side.

    Args:
        config: Resolved run configuration
        local: LocalEndpoint holding the local snapshots
        remote: SSHEndpoint holding the remote copies
        clock: Returns the current local time
    """

    def __init__(self, config, local, remote, clock=datetime.now) -> None:
        self.timestamps = TimestampFormat(config.global_config.date_format)
        self.local = local
        self.endpoints = {Side.LOCAL: local, Side.REMOTE: remote}
        self.clock = clock

    def now(self) -> datetime:
        return self.clock().replace(microsecond=0)

    def create(self, subvolume, timeout=None) -> Snapshot:
        """Snapshot ``subvolume`` to ``<localRoot>/<name>/<name>-<now>``.

        Raises:
            SubvolumeSourceError: The source is not a btrfs subvolume
            SnapshotError: Creation or the post-creation check failed
        """
        try:
            if not self.local.is_subvolume(subvolume.path, timeout=timeout):
                raise SubvolumeSourceError(f"Subvolume {subvolume.path} not found")
        except subprocess.TimeoutExpired as e:
            raise SnapshotError(
                SnapshotFailure.CREATION_FAILED, f"timed out checking {subvolume.path}"
            ) from e

        timestamp = self.now()
        history = self.list(subvolume, Side.LOCAL)
        if history and history[-1].timestamp >= timestamp:
            raise SnapshotError(
                SnapshotFailure.CREATION_FAILED,
                f"newest snapshot {history[-1].name} is not older than "
                f"{self.timestamps.format(timestamp)}",
            )

        name = self.timestamps.snapshot_name(subvolume.name, timestamp)
        logger.info("Creating snapshot of %s as %s...", subvolume.path, name)
        try:
            directory = self.local.make_snapshot_dir(subvolume.name)
            path = directory / name
            self.local.create_snapshot(subvolume.path, path, timeout=timeout)
        except subprocess.CalledProcessError as e:
            logger.error("Failed to create snapshot of %s", subvolume.path)
            stderr = e.stderr.decode("utf-8", errors="replace") if e.stderr else ""
            if stderr:
                logger.error("%s", stderr.strip())
            raise SnapshotError(SnapshotFailure.CREATION_FAILED, str(e)) from e
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error("Failed to create snapshot of %s: %s", subvolume.path, e)
            raise SnapshotError(SnapshotFailure.CREATION_FAILED, str(e)) from e
        logger.info("Successfully created snapshot: %s", path)

        # An entry can exist without being a complete subvolume
        try:
            verified = self.local.is_subvolume(path, timeout=timeout)
        except subprocess.TimeoutExpired:
            verified = False
        if not verified:
            logger.error("Snapshot was created but is NOT a btrfs subvolume!")
            raise SnapshotError(
                SnapshotFailure.VERIFICATION_FAILED, f"{path} is not a subvolume"
            )
        logger.info("Verified snapshot is a valid btrfs subvolume")

        return Snapshot(subvolume.name, timestamp, path, Side.LOCAL)

    def list(self, subvolume, side: Side) -> SnapshotHistory:
        """Return the snapshots of ``subvolume`` on ``side``, oldest first.

        Entries whose names do not parse are ignored.
        """
        endpoint = self.endpoints[side]
        snapshots = []
        for name in endpoint.list_snapshot_names(subvolume.name):
            timestamp = self.timestamps.parse_snapshot_name(subvolume.name, name)
            if timestamp is None:
                logger.debug("Ignoring unrecognized entry %r on %s", name, side.value)
                continue
            path = endpoint.snapshot_path(subvolume.name, name)
            snapshots.append(Snapshot(subvolume.name, timestamp, path, side))
        snapshots.sort(key=lambda s: s.timestamp)
        return snapshots
