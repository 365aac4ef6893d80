"""Core backup operations for btrfs-backup.

Snapshot creation, parent selection, send/receive transfers, retention and
the orchestration that sequences them per subvolume.
"""

from .orchestrator import BackupOutcome, Orchestrator, OutcomeStatus, RunSummary, Stage
from .parent import select_parent
from .probe import ConnectivityProbe, ProbeResult, ProbeStatus
from .retention import PruneResult, RetentionGC
from .snapshots import SnapshotHistory, SnapshotManager
from .transfer import TransferEngine, TransferMode

__all__ = [
    "BackupOutcome",
    "ConnectivityProbe",
    "Orchestrator",
    "OutcomeStatus",
    "ProbeResult",
    "ProbeStatus",
    "PruneResult",
    "RetentionGC",
    "RunSummary",
    "SnapshotHistory",
    "SnapshotManager",
    "Stage",
    "TransferEngine",
    "TransferMode",
    "select_parent",
]
