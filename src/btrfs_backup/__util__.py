# pyright: standard

"""btrfs-backup: btrfs_backup/__util__.py
Common utility code shared between modules.
"""

import logging
import subprocess
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import PurePath

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "%Y%m%d-%H%M%S"


class AbortError(Exception):
    """Run-scoped failure that aborts the whole run."""


class PreconditionError(AbortError):
    """A local requirement for running a backup is not met."""


class ConnectivityError(AbortError):
    """The remote endpoint is unusable."""


class SubvolumeSourceError(Exception):
    """A configured source path is not a btrfs subvolume."""


class SnapshotFailure(Enum):
    CREATION_FAILED = "creation failed"
    VERIFICATION_FAILED = "verification failed"


class SnapshotError(Exception):
    """Snapshot creation or verification failed."""

    def __init__(self, reason: SnapshotFailure, message: str) -> None:
        super().__init__(f"{reason.value}: {message}")
        self.reason = reason


class SnapshotTransferError(Exception):
    """A single send/receive attempt failed."""


class TransferError(Exception):
    """Every attempted transfer mode failed.

    Attributes:
        attempts: list of (mode, cause) tuples in the order they were tried
    """

    def __init__(self, attempts) -> None:
        self.attempts = list(attempts)
        causes = "; ".join(f"{mode.value}: {cause}" for mode, cause in self.attempts)
        super().__init__(f"Transfer failed ({causes})")


class TransferCancelled(TransferError):
    """The run was cancelled while a transfer was in flight."""


class Side(Enum):
    LOCAL = "local"
    REMOTE = "remote"


class TimestampFormat:
    """Formats and parses the timestamp embedded in snapshot names.

    Names have the form ``<subvolume>-<timestamp>``. Parsing is strict: the
    timestamp part must re-format to exactly the same text, so names that
    only partially match the format are rejected.
    """

    def __init__(self, fmt: str = DEFAULT_DATE_FORMAT) -> None:
        self.fmt = fmt

    def format(self, timestamp: datetime) -> str:
        return timestamp.strftime(self.fmt)

    def parse(self, text: str) -> datetime | None:
        try:
            timestamp = datetime.strptime(text, self.fmt)
        except ValueError:
            return None
        if timestamp.strftime(self.fmt) != text:
            return None
        return timestamp

    def snapshot_name(self, subvolume_name: str, timestamp: datetime) -> str:
        return f"{subvolume_name}-{self.format(timestamp)}"

    def parse_snapshot_name(self, subvolume_name: str, name: str) -> datetime | None:
        """Return the timestamp embedded in ``name`` or None if it is malformed."""
        prefix = f"{subvolume_name}-"
        if not name.startswith(prefix):
            return None
        return self.parse(name[len(prefix) :])

    def is_round_trip_safe(self) -> bool:
        """Check the format keeps second resolution and survives a round trip."""
        sample = datetime(2001, 2, 3, 4, 5, 6)
        text = self.format(sample)
        return "/" not in text and self.parse(text) == sample


@dataclass(frozen=True)
class Snapshot:
    """A read-only snapshot of a subvolume on one side."""

    subvolume_name: str
    timestamp: datetime
    path: PurePath
    side: Side

    @property
    def name(self) -> str:
        return self.path.name

    def __str__(self) -> str:
        return f"{self.name} ({self.side.value})"


def log_heading(caption: str) -> str:
    """Format a heading line for log output."""
    return f"=== {caption} ==="


def exec_subprocess(command, method="run", **kwargs):
    """Run ``command`` with the given subprocess method.

    ``run`` calls default to capturing output so callers can inspect
    stdout/stderr; ``Popen`` calls return the running process.
    """
    logger.debug("Executing: %s", command)
    if method == "Popen":
        return subprocess.Popen(command, **kwargs)
    kwargs.setdefault("capture_output", True)
    kwargs.setdefault("check", False)
    result = subprocess.run(command, **kwargs)
    logger.debug("Command %s returned %d", command[0], result.returncode)
    return result


def decode_output(data) -> str:
    """Decode process output for logging."""
    if not data:
        return ""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    return data.strip()
