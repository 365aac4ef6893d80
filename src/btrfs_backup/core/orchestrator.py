"""Backup run orchestration: pre-flight, per-subvolume pipeline, summary.

Each subvolume goes through snapshot -> transfer -> prune. A failure stops
only that subvolume; pruning is skipped when its transfer failed so the last
common parent survives. Run-scoped failures (preconditions, connectivity)
raise AbortError subclasses and end the run before any subvolume is touched.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from filelock import FileLock, Timeout

from ..__util__ import (
    ConnectivityError,
    PreconditionError,
    Side,
    SnapshotError,
    SubvolumeSourceError,
    TransferError,
    log_heading,
)
from ..endpoint import LocalEndpoint, SSHEndpoint
from .parent import select_parent
from .probe import ConnectivityProbe, ProbeResult
from .retention import RetentionGC
from .snapshots import SnapshotManager
from .transfer import TransferEngine, TransferMode

logger = logging.getLogger(__name__)

RULE = "=" * 42


class OutcomeStatus(Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class Stage(Enum):
    SNAPSHOT = "snapshot"
    TRANSFER = "transfer"
    PRUNE = "prune"


@dataclass
class BackupOutcome:
    """Result of backing up one subvolume."""

    name: str
    status: OutcomeStatus
    reason: str = ""
    stage: Optional[Stage] = None
    mode: Optional[TransferMode] = None
    deleted: dict[Side, int] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class RunSummary:
    """Thread-safe accumulator of subvolume outcomes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outcomes: list[BackupOutcome] = []
        self.cancelled = False

    def add(self, outcome: BackupOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    @property
    def outcomes(self) -> list[BackupOutcome]:
        with self._lock:
            return list(self._outcomes)

    def names(self, status: OutcomeStatus) -> list[str]:
        return [o.name for o in self.outcomes if o.status is status]

    @property
    def succeeded(self) -> list[str]:
        return self.names(OutcomeStatus.SUCCEEDED)

    @property
    def skipped(self) -> list[str]:
        return self.names(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> list[str]:
        return self.names(OutcomeStatus.FAILED)

    @property
    def success(self) -> bool:
        return not self.failed and not self.cancelled

    def log(self) -> None:
        logger.info(RULE)
        logger.info("Backup Summary:")
        if self.succeeded:
            logger.info("Successful: %s", " ".join(self.succeeded))
        if self.skipped:
            logger.warning("Skipped: %s", " ".join(self.skipped))
        if self.failed:
            logger.error("Failed: %s", " ".join(self.failed))
        if self.cancelled:
            logger.error("Run was cancelled before all subvolumes were processed")
        logger.info(RULE)


class Orchestrator:
    """Runs a complete backup of every configured subvolume.

    Args:
        config: Resolved run configuration
        local: Local endpoint (defaults to a LocalEndpoint for ``config``)
        remote: Remote endpoint (defaults to an SSHEndpoint for ``config``)
        cancel_event: Event that stops the run between subvolumes
        clock: Returns the current local time
    """

    def __init__(
        self, config, local=None, remote=None, cancel_event=None, clock=datetime.now
    ) -> None:
        self.config = config
        self.local = local if local is not None else LocalEndpoint(config)
        self.remote = remote if remote is not None else SSHEndpoint(config)
        self.cancel_event = cancel_event or threading.Event()
        self.probe = ConnectivityProbe(self.remote)
        self.snapshots = SnapshotManager(config, self.local, self.remote, clock=clock)
        self.transfer = TransferEngine(
            config, self.local, self.remote, cancel_event=self.cancel_event
        )
        self.retention = RetentionGC(self.snapshots)

    def cancel(self) -> None:
        self.cancel_event.set()

    def preflight(self) -> ProbeResult:
        """Check local preconditions and remote connectivity.

        Raises:
            PreconditionError: A local requirement is missing
            ConnectivityError: The remote host cannot receive snapshots
        """
        self.local.check_prerequisites()
        self.remote.check_config()
        result = self.probe.probe()
        if not result.ok:
            raise ConnectivityError(result.reason)
        return result

    def run(self) -> RunSummary:
        """Back up all subvolumes and return the summary.

        Raises:
            AbortError: Pre-flight failed; nothing was snapshotted
        """
        logger.info(RULE)
        logger.info("Starting BTRFS Backup")
        logger.info(RULE)

        self.preflight()

        lock_path = self.config.get_lock_file()
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PreconditionError(f"Cannot create {lock_path.parent}: {e}") from e
        lock = FileLock(str(lock_path))
        try:
            lock.acquire(timeout=0)
        except Timeout as e:
            raise PreconditionError(f"Another backup run holds {lock_path}") from e

        summary = RunSummary()
        try:
            self._run_subvolumes(summary)
        finally:
            lock.release()

        summary.cancelled = self.cancel_event.is_set()
        summary.log()
        return summary

    def _run_subvolumes(self, summary: RunSummary) -> None:
        subvolumes = self.config.subvolumes
        workers = self.config.global_config.parallel_subvolumes

        if workers > 1 and len(subvolumes) > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [
                    executor.submit(self._backup_unless_cancelled, s, summary)
                    for s in subvolumes
                ]
                for future in as_completed(futures):
                    future.result()
            return

        for index, subvolume in enumerate(subvolumes):
            # Throttle back-to-back transfers; a cancel ends the pause early
            if index and self.cancel_event.wait(self.config.global_config.pause_seconds):
                break
            if not self._backup_unless_cancelled(subvolume, summary):
                break

    def _backup_unless_cancelled(self, subvolume, summary: RunSummary) -> bool:
        if self.cancel_event.is_set():
            logger.warning("Run cancelled, not starting backup for %s", subvolume.name)
            return False
        summary.add(self.backup_subvolume(subvolume))
        return True

    def _remote_exists(self, snapshot) -> bool:
        return self.remote.snapshot_exists(snapshot)

    def backup_subvolume(self, subvolume) -> BackupOutcome:
        """Snapshot, transfer and prune one subvolume; never raises."""
        name = subvolume.name
        deadline = time.monotonic() + self.config.global_config.subvolume_timeout
        stage = Stage.SNAPSHOT
        logger.info(log_heading(f"Starting backup for {name}"))

        try:
            snapshot = self.snapshots.create(
                subvolume, timeout=max(deadline - time.monotonic(), 0)
            )

            stage = Stage.TRANSFER
            history = self.snapshots.list(subvolume, Side.LOCAL)
            parent = select_parent(snapshot, history, self._remote_exists)
            mode = self.transfer.send(snapshot, parent, deadline=deadline)
            logger.info("Backup completed successfully for %s", name)

            stage = Stage.PRUNE
            results = [
                self.retention.prune(
                    subvolume, side, self.config.retention, keep={snapshot.name}
                )
                for side in (Side.LOCAL, Side.REMOTE)
            ]
        except SubvolumeSourceError as e:
            logger.warning("%s, skipping...", e)
            return BackupOutcome(name, OutcomeStatus.SKIPPED, reason=str(e))
        except SnapshotError as e:
            logger.error("Skipping remote backup for %s due to snapshot failure: %s", name, e)
            return BackupOutcome(name, OutcomeStatus.FAILED, reason=str(e), stage=stage)
        except TransferError as e:
            logger.error("Remote backup failed for %s: %s", name, e)
            return BackupOutcome(name, OutcomeStatus.FAILED, reason=str(e), stage=stage)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Backup of %s failed during %s: %r", name, stage.value, e)
            return BackupOutcome(name, OutcomeStatus.FAILED, reason=str(e), stage=stage)

        logger.info(log_heading(f"Finished backup for {name}"))
        return BackupOutcome(
            name,
            OutcomeStatus.SUCCEEDED,
            mode=mode,
            deleted={r.side: r.deleted_count for r in results},
            warnings=[w for r in results for w in r.warnings],
        )
