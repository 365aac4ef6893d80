# pyright: standard

"""btrfs-backup: btrfs_backup/endpoint/common.py
Common functionality among endpoints.
"""

import logging

from ..__util__ import Side, Snapshot

logger = logging.getLogger(__name__)


class Endpoint:
    """Generic structure of a snapshot store on one side.

    An endpoint owns a root directory with one directory per subvolume:
    ``<root>/<subvolume>/<subvolume>-<timestamp>``. Subclasses provide the
    primitive filesystem operations for their side.
    """

    side = Side.LOCAL

    def __init__(self, root) -> None:
        self.root = root

    def __repr__(self) -> str:
        return f"{self.side.value}:{self.root}"

    def root_exists(self) -> bool:
        return self._is_dir(self.root)

    def snapshot_dir(self, subvolume_name: str):
        return self.root / subvolume_name

    def snapshot_path(self, subvolume_name: str, snapshot_name: str):
        return self.snapshot_dir(subvolume_name) / snapshot_name

    def list_snapshot_names(self, subvolume_name: str) -> list[str]:
        """Return the entry names in the subvolume's snapshot directory.

        A missing directory yields an empty list.
        """
        directory = self.snapshot_dir(subvolume_name)
        if not self._is_dir(directory):
            logger.debug("No snapshot directory at %r for %s", self, subvolume_name)
            return []
        return sorted(self._listdir(directory))

    def snapshot_exists(self, snapshot: Snapshot) -> bool:
        """Check whether a snapshot with the same name exists on this side."""
        return self._is_dir(self.snapshot_path(snapshot.subvolume_name, snapshot.name))

    def delete_snapshot(self, snapshot: Snapshot) -> None:
        """Delete the given snapshot subvolume."""
        self._delete_subvolume(snapshot.path)
        logger.info("Deleted snapshot subvolume: %s", snapshot.path)

    # The following methods must be implemented by endpoints.

    def _listdir(self, location) -> list[str]:
        raise NotImplementedError()

    def _is_dir(self, location) -> bool:
        raise NotImplementedError()

    def _delete_subvolume(self, location) -> None:
        raise NotImplementedError()
