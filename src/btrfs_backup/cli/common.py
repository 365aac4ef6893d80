"""Shared CLI utilities: verbosity options, config loading, signal handling."""

import argparse
import contextlib
import logging
import signal
import threading

from ..config import ConfigError, find_config_file, load_config
from ..config.loader import generate_example_config

logger = logging.getLogger(__name__)


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Log level string (DEBUG, INFO, WARNING)
    """
    if getattr(args, "debug", False) or getattr(args, "verbose", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    else:
        return "INFO"


def load_run_config(args: argparse.Namespace):
    """Find and load the configuration named by ``args``.

    Returns:
        Tuple of (BackupConfig, warnings), or None when no usable config exists
    """
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found. Example configuration:")
            print("")
            print(generate_example_config())
            return None

        logger.info("Loading configuration from: %s", config_path)
        return load_config(config_path)

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return None


@contextlib.contextmanager
def cancel_on_signals(cancel_event: threading.Event):
    """Set ``cancel_event`` on SIGINT/SIGTERM while the block runs."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        logger.warning(
            "Received %s, finishing current step and stopping",
            signal.Signals(signum).name,
        )
        cancel_event.set()

    previous = {
        signum: signal.signal(signum, handler)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for signum, old_handler in previous.items():
            signal.signal(signum, old_handler)
