"""Tests for the two-stage send/receive transfer engine."""

import threading
import time
from pathlib import Path

import pytest

from btrfs_backup.__util__ import TransferCancelled, TransferError
from btrfs_backup.core.snapshots import SnapshotManager
from btrfs_backup.core.transfer import TransferEngine, TransferMode

from conftest import (
    RECEIVE_FAIL,
    RECEIVE_HANG,
    RECEIVE_OK,
    RECEIVE_PARTIAL,
    SEND_FAIL,
    add_snapshot,
)


@pytest.fixture
def manager(config, local, remote, clock):
    return SnapshotManager(config, local, remote, clock=clock)


@pytest.fixture
def engine(config, local, remote):
    return TransferEngine(config, local, remote, poll_interval=0.05)


@pytest.fixture
def snapshot(manager, config):
    return manager.create(config.subvolumes[0])


@pytest.fixture
def parent(manager, config, local, remote):
    add_snapshot(local, "Documents", 1)
    add_snapshot(remote, "Documents", 1)
    return manager.list(config.subvolumes[0], local.side)[0]


def remote_names(remote):
    directory = Path(remote.snapshot_dir("Documents"))
    return sorted(p.name for p in directory.iterdir()) if directory.exists() else []


class TestSend:
    """Tests for TransferEngine.send."""

    def test_full_transfer_without_parent(self, engine, snapshot, local, remote):
        """Test a missing parent means a single full send."""
        mode = engine.send(snapshot)

        assert mode is TransferMode.FULL
        assert local.send_calls == [(Path(snapshot.path), None)]
        assert snapshot.name in remote_names(remote)

    def test_incremental_transfer_with_parent(self, engine, snapshot, parent, local, remote):
        """Test a parent leads to an incremental send against it."""
        mode = engine.send(snapshot, parent)

        assert mode is TransferMode.INCREMENTAL
        assert local.send_calls == [(Path(snapshot.path), parent.path)]
        assert remote.receive_calls == [Path(remote.snapshot_dir("Documents"))]

    def test_creates_remote_directory(self, engine, snapshot, remote):
        """Test the subvolume's remote directory is created when absent."""
        assert not Path(remote.snapshot_dir("Documents")).exists()
        engine.send(snapshot)
        assert Path(remote.snapshot_dir("Documents")).is_dir()

    def test_incremental_failure_falls_back_to_full(self, engine, snapshot, parent, local, remote):
        """Test an incremental failure followed by full success reports FULL once."""
        remote.receive_scripts = [RECEIVE_FAIL, RECEIVE_OK]

        mode = engine.send(snapshot, parent)

        assert mode is TransferMode.FULL
        assert len(local.send_calls) == 2
        assert local.send_calls[0][1] == parent.path
        assert local.send_calls[1][1] is None
        assert len(remote.receive_calls) == 2

    def test_receive_failure_with_send_success_fails(self, engine, snapshot, remote):
        """Test a failing ingestion stage fails the attempt despite a clean send."""
        remote.receive_scripts = [RECEIVE_FAIL]

        with pytest.raises(TransferError) as excinfo:
            engine.send(snapshot)

        attempts = excinfo.value.attempts
        assert [mode for mode, _ in attempts] == [TransferMode.FULL]
        assert "receive exited with 1" in attempts[0][1]
        assert "receive failed" in attempts[0][1]

    def test_send_failure_with_receive_success_fails(self, engine, snapshot, local, remote):
        """Test a failing extraction stage fails the attempt despite a clean receive."""
        local.send_scripts = [SEND_FAIL]
        remote.receive_scripts = ["cat >/dev/null"]

        with pytest.raises(TransferError) as excinfo:
            engine.send(snapshot)

        cause = excinfo.value.attempts[0][1]
        assert "send exited with 1" in cause
        assert "send failed" in cause
        assert "receive exited" not in cause

    def test_both_modes_fail(self, engine, snapshot, parent, local, remote):
        """Test TransferError carries both attempted modes' causes."""
        remote.receive_scripts = [RECEIVE_FAIL, RECEIVE_FAIL]

        with pytest.raises(TransferError) as excinfo:
            engine.send(snapshot, parent)

        assert [m for m, _ in excinfo.value.attempts] == [TransferMode.INCREMENTAL, TransferMode.FULL]
        assert len(local.send_calls) == 2

    def test_partial_receive_is_discarded_before_fallback(self, engine, snapshot, parent, remote):
        """Test a half-written remote snapshot does not block the full retry."""
        remote.receive_scripts = [RECEIVE_PARTIAL, RECEIVE_OK]

        mode = engine.send(snapshot, parent)

        assert mode is TransferMode.FULL
        assert snapshot.name in remote_names(remote)

    def test_failed_transfer_leaves_no_partial_copy(self, engine, snapshot, remote):
        """Test the remote holds no copy of the snapshot after a terminal failure."""
        remote.receive_scripts = [RECEIVE_PARTIAL]

        with pytest.raises(TransferError):
            engine.send(snapshot)

        assert snapshot.name not in remote_names(remote)

    def test_leftover_from_earlier_run_is_replaced(self, engine, snapshot, remote):
        """Test an existing remote entry with the same name is removed first."""
        leftover = Path(remote.snapshot_path("Documents", snapshot.name))
        leftover.mkdir(parents=True)
        (leftover / "partial").write_text("x")

        engine.send(snapshot)

        assert leftover.is_dir()
        assert not (leftover / "partial").exists()

    def test_remote_directory_creation_failure(self, engine, snapshot, remote, local):
        """Test an uncreatable remote directory fails without sending."""
        remote.can_mkdir = False

        with pytest.raises(TransferError, match="Failed to create remote directory"):
            engine.send(snapshot)
        assert local.send_calls == []

    def test_invalid_snapshot_not_sent(self, engine, snapshot, local):
        """Test a snapshot that is no longer a subvolume is not sent."""
        local.fail_verify = True

        with pytest.raises(TransferError, match="not a valid btrfs subvolume"):
            engine.send(snapshot)
        assert local.send_calls == []

    def test_deadline_stops_hanging_transfer(self, engine, snapshot, parent, local, remote):
        """Test a wedged stage is killed at the deadline and no fallback starts."""
        remote.receive_scripts = [RECEIVE_HANG]
        started = time.monotonic()

        with pytest.raises(TransferError) as excinfo:
            engine.send(snapshot, parent, deadline=time.monotonic() + 0.5)

        assert time.monotonic() - started < 20
        causes = [cause for _, cause in excinfo.value.attempts]
        assert "timed out" in causes[0]
        assert "deadline exceeded" in causes[1]
        assert len(local.send_calls) == 1

    def test_cancel_aborts_without_fallback(self, config, local, remote, snapshot, parent):
        """Test cancelling mid-transfer kills both stages and skips the fallback."""
        cancel_event = threading.Event()
        engine = TransferEngine(config, local, remote, cancel_event=cancel_event, poll_interval=0.05)
        remote.receive_scripts = [RECEIVE_HANG]
        timer = threading.Timer(0.3, cancel_event.set)
        timer.start()

        try:
            with pytest.raises(TransferCancelled) as excinfo:
                engine.send(snapshot, parent)
        finally:
            timer.cancel()

        assert [m for m, _ in excinfo.value.attempts] == [TransferMode.INCREMENTAL]
        assert len(local.send_calls) == 1
        assert snapshot.name not in remote_names(remote)

    def test_manual_command_hint(self, engine, snapshot):
        """Test the manual retry hint pipes btrfs send into a remote receive."""
        hint = engine.manual_command(snapshot)
        assert hint.startswith(f"btrfs send {snapshot.path}")
        assert "sudo btrfs receive" in hint
        assert "sudo mkdir -p" in hint
