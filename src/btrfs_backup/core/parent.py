"""Selection of the parent snapshot for incremental transfers."""

import logging
from typing import Callable, Iterable, Optional

from ..__util__ import Snapshot

logger = logging.getLogger(__name__)


def select_parent(
    target: Snapshot,
    local_history: Iterable[Snapshot],
    remote_exists: Callable[[Snapshot], bool],
) -> Optional[Snapshot]:
    """Pick the newest local snapshot older than ``target`` that the remote also has.

    Candidates are checked newest first and the first one present on the
    remote wins. A candidate only present locally is skipped: the remote
    cannot apply a delta against a parent it does not hold. None means a
    full transfer is required.

    Args:
        target: Snapshot about to be sent
        local_history: Local snapshots of the same subvolume
        remote_exists: Predicate telling whether a snapshot exists remotely

    Returns:
        The parent snapshot, or None
    """
    candidates = sorted(
        (
            s
            for s in local_history
            if s.subvolume_name == target.subvolume_name
            and s.timestamp < target.timestamp
        ),
        key=lambda s: s.timestamp,
        reverse=True,
    )

    for candidate in candidates:
        if remote_exists(candidate):
            logger.debug("Parent candidate %s exists remotely", candidate.name)
            return candidate
        logger.debug("Parent candidate %s is missing remotely, skipping", candidate.name)

    return None
