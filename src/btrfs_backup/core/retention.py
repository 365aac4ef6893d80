"""Age-based pruning of local and remote snapshots."""

import logging
import subprocess
from dataclasses import dataclass, field
from datetime import timedelta

from ..__util__ import Side

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    """Result of pruning one subvolume on one side."""

    side: Side
    deleted_count: int = 0
    warnings: list[str] = field(default_factory=list)


class RetentionGC:
    """Deletes snapshots older than the retention window of their side.

    The cutoff is computed when ``prune`` runs, not when snapshots were
    created. Callers must only prune a subvolume after its transfer has
    finished so the parent of that transfer is never removed underneath it.
    """

    def __init__(self, snapshot_manager) -> None:
        self.snapshots = snapshot_manager

    def prune(self, subvolume, side: Side, policy, keep=()) -> PruneResult:
        """Delete expired snapshots of ``subvolume`` on ``side``.

        Snapshots named in ``keep`` are never deleted, whatever their age.
        A deletion failure is recorded as a warning and pruning continues.
        """
        days = policy.days_for(side)
        cutoff = self.snapshots.now() - timedelta(days=days)
        endpoint = self.snapshots.endpoints[side]
        result = PruneResult(side=side)

        logger.info(
            "Cleaning up %s snapshots older than %d days for %s...",
            side.value,
            days,
            subvolume.name,
        )

        for snapshot in self.snapshots.list(subvolume, side):
            if snapshot.timestamp >= cutoff:
                continue
            if snapshot.name in keep:
                logger.debug("Keeping just transferred snapshot %s", snapshot.path)
                continue
            logger.info("Deleting old snapshot: %s", snapshot.path)
            try:
                endpoint.delete_snapshot(snapshot)
            except (subprocess.CalledProcessError, OSError) as e:
                message = f"Failed to delete {snapshot.path}: {e}"
                logger.warning("%s", message)
                result.warnings.append(message)
                continue
            result.deleted_count += 1

        if result.deleted_count:
            logger.info(
                "Deleted %d old %s snapshot(s) for %s",
                result.deleted_count,
                side.value,
                subvolume.name,
            )
        else:
            logger.info(
                "No old %s snapshots to clean up for %s", side.value, subvolume.name
            )
        return result
