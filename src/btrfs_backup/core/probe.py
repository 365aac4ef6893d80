"""Pre-flight connectivity probe for the remote backup host."""

import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

CONNECTION_TEST_MESSAGE = "Connection test successful"


class ProbeStatus(Enum):
    READY = "ready"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class ProbeResult:
    """Outcome of a connectivity probe."""

    status: ProbeStatus
    warnings: list[str] = field(default_factory=list)
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not ProbeStatus.FAILED


class ConnectivityProbe:
    """Checks that the remote host can receive snapshots.

    The probe never raises; the caller decides what a failed probe means.
    Apart from creating a missing remote root it has no side effects, so it
    can be repeated freely.
    """

    def __init__(self, remote) -> None:
        self.remote = remote

    def probe(self) -> ProbeResult:
        root = self.remote.root
        logger.info("Testing SSH connection to %s...", self.remote.hostname)

        if not self.remote.echo(CONNECTION_TEST_MESSAGE):
            logger.error("Cannot connect to %s", self.remote.hostname)
            logger.error("Testing with verbose output...")
            for line in self.remote.connection_diagnostics():
                logger.debug("%s", line)
            logger.error("Please ensure:")
            logger.error(
                "  1. The SSH config for host '%s' is correct", self.remote.hostname
            )
            logger.error("  2. The SSH key is added to the remote's ~/.ssh/authorized_keys")
            logger.error("  3. The remote host is accessible")
            return self._failed(f"Cannot connect to {self.remote.hostname}")
        logger.info("SSH connection successful")

        if not self.remote.root_exists():
            logger.warning("Remote path %s does not exist, attempting to create it...", root)
            if not self.remote.makedirs(root, chown=True):
                logger.error(
                    "Please run on remote host: sudo mkdir -p %s && sudo chown $USER:$USER %s",
                    root,
                    root,
                )
                return self._failed(f"Failed to create remote path {root}")
            logger.info("Successfully created remote path %s", root)

        if not self.remote.which("btrfs"):
            logger.error("Please install btrfs-progs on remote host")
            return self._failed("btrfs command not found on remote host")

        warnings = []
        if not self.remote.has_passwordless_btrfs():
            warnings.append("Remote user may need sudo password for btrfs commands")
            logger.warning(
                "Consider adding to sudoers: $USER ALL=(ALL) NOPASSWD: /usr/bin/btrfs"
            )

        fs_type = self.remote.filesystem_type(root)
        if fs_type is None:
            warnings.append(
                f"Unable to verify if remote path {root} is on a btrfs filesystem"
            )
        elif fs_type != "btrfs":
            warnings.append(
                f"Remote path {root} appears to be on {fs_type}, not btrfs; "
                "btrfs receive will fail"
            )
        else:
            logger.info("Verified remote path is on a btrfs filesystem")

        for warning in warnings:
            logger.warning("%s", warning)

        logger.info("Remote path is ready for backups")
        status = ProbeStatus.DEGRADED if warnings else ProbeStatus.READY
        return ProbeResult(status=status, warnings=warnings)

    @staticmethod
    def _failed(reason: str) -> ProbeResult:
        logger.error("%s", reason)
        return ProbeResult(status=ProbeStatus.FAILED, reason=reason)
