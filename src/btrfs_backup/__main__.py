# pyright: standard

"""btrfs-backup: btrfs_backup/__main__.py.

Snapshot btrfs subvolumes and replicate them incrementally to a remote host.
Requires Python >= 3.11, btrfs-progs on both hosts and ssh.
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
