# pyright: standard

"""btrfs-backup: btrfs_backup/endpoint/__init__.py."""

from .common import Endpoint
from .local import LocalEndpoint
from .ssh import SSHEndpoint

__all__ = ["Endpoint", "LocalEndpoint", "SSHEndpoint"]
