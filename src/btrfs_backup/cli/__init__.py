"""Command line interface for btrfs-backup."""

from .dispatcher import main

__all__ = ["main"]
