"""Two-stage btrfs send/receive transfer with full-send fallback.

A transfer pipes a local ``btrfs send`` into ``btrfs receive`` on the remote
host (through ssh). Both processes are joined explicitly and the attempt
only succeeds when both exit with status 0.
"""

import logging
import shlex
import subprocess
import time
from concurrent.futures import ThreadPoolExecutor, wait
from enum import Enum
from typing import Optional

from .. import __util__
from ..__util__ import (
    Side,
    Snapshot,
    SnapshotTransferError,
    TransferCancelled,
    TransferError,
)

logger = logging.getLogger(__name__)

# Seconds to wait for a terminated stage before killing it
KILL_GRACE_SECONDS = 5


class TransferMode(Enum):
    INCREMENTAL = "incremental"
    FULL = "full"


def _collect(process, stream) -> tuple[int, str]:
    """Drain ``stream`` and wait for ``process``; return (returncode, output)."""
    output = stream.read() if stream is not None else b""
    returncode = process.wait()
    return returncode, __util__.decode_output(output)


class TransferEngine:
    """Sends snapshots to the remote endpoint.

    Args:
        config: Resolved run configuration
        local: LocalEndpoint providing ``btrfs send``
        remote: SSHEndpoint providing ``btrfs receive``
        cancel_event: Optional threading.Event; setting it aborts a transfer
        poll_interval: Seconds between cancellation/deadline checks
    """

    def __init__(self, config, local, remote, cancel_event=None, poll_interval=0.5):
        self.transfer_timeout = config.global_config.transfer_timeout
        self.local = local
        self.remote = remote
        self.cancel_event = cancel_event
        self.poll_interval = poll_interval

    def send(
        self,
        snapshot: Snapshot,
        parent: Optional[Snapshot] = None,
        deadline: Optional[float] = None,
    ) -> TransferMode:
        """Transfer ``snapshot``, incrementally against ``parent`` when given.

        An incremental failure falls back to one full transfer. Any partial
        remote copy is removed before each attempt and after a failed one.

        Args:
            snapshot: Local snapshot to send
            parent: Local snapshot also present remotely, or None
            deadline: time.monotonic() value after which attempts are abandoned

        Returns:
            The mode that succeeded

        Raises:
            TransferError: Every attempted mode failed
            TransferCancelled: The cancel event was set during a transfer
        """
        destination = self.remote.snapshot_dir(snapshot.subvolume_name)
        modes = [TransferMode.FULL]
        if parent is not None:
            modes.insert(0, TransferMode.INCREMENTAL)
        logger.info("Sending %s to remote server...", snapshot.name)

        if not self.local.is_subvolume(snapshot.path):
            raise TransferError(
                [(modes[0], f"Snapshot is not a valid btrfs subvolume: {snapshot.path}")]
            )

        if not self.remote.makedirs(destination):
            raise TransferError(
                [(modes[0], f"Failed to create remote directory {destination}")]
            )

        attempts = []
        for mode in modes:
            attempt_parent = parent if mode is TransferMode.INCREMENTAL else None
            if attempt_parent is not None:
                logger.info("Using incremental send with parent: %s", attempt_parent.name)
            else:
                logger.info("Performing full send of snapshot")

            try:
                self._discard_partial(snapshot)
                self._transfer(snapshot, attempt_parent, destination, deadline)
            except SnapshotTransferError as e:
                logger.error(
                    "%s send of %s failed: %s", mode.value.capitalize(), snapshot.name, e
                )
                attempts.append((mode, str(e)))
                try:
                    self._discard_partial(snapshot)
                except SnapshotTransferError as cleanup_error:
                    logger.warning("%s", cleanup_error)
                if self._cancelled():
                    raise TransferCancelled(attempts)
                if mode is TransferMode.INCREMENTAL:
                    logger.warning("Incremental send failed, trying full send...")
                continue

            logger.info(
                "Successfully sent snapshot %s to remote (%s)", snapshot.name, mode.value
            )
            return mode

        logger.error("Failed to send snapshot to remote")
        logger.error("Snapshot path: %s", snapshot.path)
        logger.error("Try manually: %s", self.manual_command(snapshot))
        raise TransferError(attempts)

    def manual_command(self, snapshot: Snapshot) -> str:
        """Shell pipeline an operator can run to retry a full send by hand."""
        destination = self.remote.snapshot_dir(snapshot.subvolume_name)
        quoted = shlex.quote(str(destination))
        receive = self.remote.receive_command(destination)[:-1] + [
            f"sudo mkdir -p {quoted} && sudo btrfs receive {quoted}"
        ]
        return f"btrfs send {shlex.quote(str(snapshot.path))} | {shlex.join(receive)}"

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _attempt_timeout(self, deadline: Optional[float]) -> float:
        timeout = float(self.transfer_timeout)
        if deadline is not None:
            timeout = min(timeout, deadline - time.monotonic())
        if timeout <= 0:
            raise SnapshotTransferError("Per-subvolume deadline exceeded")
        return timeout

    def _discard_partial(self, snapshot: Snapshot) -> None:
        """Delete a remote snapshot of the same name left by an earlier attempt."""
        remote_path = self.remote.snapshot_path(snapshot.subvolume_name, snapshot.name)
        remote_snapshot = Snapshot(
            snapshot.subvolume_name, snapshot.timestamp, remote_path, Side.REMOTE
        )
        if not self.remote.snapshot_exists(remote_snapshot):
            return
        logger.warning("Removing partially received snapshot %s", remote_path)
        try:
            self.remote.delete_snapshot(remote_snapshot)
        except subprocess.CalledProcessError as e:
            raise SnapshotTransferError(
                f"Cannot remove partial remote snapshot {remote_path}: {e}"
            ) from e

    def _transfer(self, snapshot, parent, destination, deadline) -> None:
        timeout = self._attempt_timeout(deadline)
        parent_path = parent.path if parent is not None else None

        try:
            send_process = self.local.send(snapshot.path, parent_path)
        except OSError as e:
            raise SnapshotTransferError(f"Send process failed to start: {e}") from e

        try:
            receive_process = self.remote.receive(destination, send_process.stdout)
        except OSError as e:
            send_process.kill()
            send_process.wait()
            raise SnapshotTransferError(f"Receive process failed to start: {e}") from e

        # Only the receiver holds the pipe now, so send sees EPIPE if receive dies
        send_process.stdout.close()

        stages = {
            "send": (send_process, send_process.stderr),
            "receive": (receive_process, receive_process.stdout),
        }
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="transfer") as pool:
            futures = {
                name: pool.submit(_collect, process, stream)
                for name, (process, stream) in stages.items()
            }
            interrupted = self._join(list(futures.values()), timeout)
            if interrupted:
                processes = [process for process, _ in stages.values()]
                self._stop(processes, list(futures.values()))
            results = {name: future.result() for name, future in futures.items()}

        for name, (returncode, output) in results.items():
            if output:
                logger.debug("%s output: %s", name, output)

        if interrupted:
            raise SnapshotTransferError(f"Transfer {interrupted}")

        failures = [
            f"{name} exited with {returncode}" + (f": {output}" if output else "")
            for name, (returncode, output) in results.items()
            if returncode != 0
        ]
        if failures:
            raise SnapshotTransferError("; ".join(failures))

    def _join(self, futures, timeout: float) -> Optional[str]:
        """Wait for both stages; return why the wait was cut short, if it was."""
        end = time.monotonic() + timeout
        while True:
            _, pending = wait(futures, timeout=self.poll_interval)
            if not pending:
                return None
            if self._cancelled():
                return "cancelled"
            if time.monotonic() >= end:
                return f"timed out after {timeout:.0f}s"

    @staticmethod
    def _stop(processes, futures) -> None:
        for process in processes:
            if process.poll() is None:
                process.terminate()
        _, pending = wait(futures, timeout=KILL_GRACE_SECONDS)
        if pending:
            for process in processes:
                if process.poll() is None:
                    process.kill()
