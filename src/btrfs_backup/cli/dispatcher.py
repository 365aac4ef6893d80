"""CLI dispatcher.

The program has a single invocation surface: a full backup run by default,
``--test`` for the connection checks only, and ``--help`` for usage.
"""

import argparse
import logging
import sys

from .. import __version__
from ..__logger__ import create_logger
from .common import add_verbosity_args, get_log_level, load_run_config
from .run import execute_backup, execute_test

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="btrfs-backup",
        description=(
            "Snapshot btrfs subvolumes and send them incrementally to a remote "
            f"backup host (version {__version__})"
        ),
        add_help=False,
    )
    parser.add_argument(
        "--test",
        action="store_true",
        help="Only test SSH connection and configuration",
    )
    parser.add_argument(
        "-h",
        "--help",
        action="store_true",
        help="Show this help message",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file",
    )
    add_verbosity_args(parser)
    return parser


def show_help(parser: argparse.ArgumentParser, args: argparse.Namespace) -> int:
    """Print usage followed by the configured remote, when it can be loaded."""
    parser.print_help()

    logging.disable(logging.CRITICAL)
    try:
        loaded = load_run_config(args)
    finally:
        logging.disable(logging.NOTSET)
    if loaded is None:
        return 0

    config, _ = loaded
    print("")
    print("Configuration:")
    ssh_config = config.remote.ssh_config or "default SSH config"
    print(f"  SSH Host:  {config.remote.host} (from {ssh_config})")
    print(f"  Remote:    {config.remote.path}")
    print(f"  Snapshots: {config.local.snapshot_path}")
    print(f"  Subvolumes: {', '.join(s.name for s in config.subvolumes) or '(none)'}")
    print("")
    print(
        f"The program uses SSH config entry '{config.remote.host}'. Make sure it is "
        "configured with host, user, and identity file."
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point; returns the process exit code."""
    argv = sys.argv[1:] if argv is None else argv
    parser = create_parser()
    args, unknown = parser.parse_known_args(argv)

    if args.help:
        return show_help(parser, args)

    log_level = get_log_level(args)
    create_logger(log_level)

    loaded = load_run_config(args)
    if loaded is None:
        return 1
    config, warnings = loaded

    create_logger(log_level, config.global_config.log_file)
    for warning in warnings:
        logger.warning("Config: %s", warning)
    for option in unknown:
        logger.warning("Unknown option: %s", option)

    if args.test:
        return execute_test(config)
    return execute_backup(config)
