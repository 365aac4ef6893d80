# pyright: standard

"""btrfs-backup: btrfs_backup/__logger__.py
A common logger writing to a rich console stream and a persistent log file.
"""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Keep the level column to exactly INFO|WARN|ERROR|DEBUG
logging.addLevelName(logging.WARNING, "WARN")

cons = Console(stderr=True)
rich_handler = RichHandler(console=cons, show_path=False)
logger = logging.getLogger("btrfs_backup")
logger.setLevel(logging.INFO)


def create_logger(level="INFO", log_file=None) -> None:
    """Helper function to setup logging to the console and an optional file."""
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = Console(stderr=True)
    rich_handler = RichHandler(
        console=cons,
        show_path=False,
        log_time_format=f"[{DATE_FORMAT}]",
    )

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False
    logger.setLevel(level)
    logger.addHandler(rich_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(Path(log_file), encoding="utf-8")
        except OSError as e:
            logger.warning("Cannot open log file %s: %s", log_file, e)
        else:
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
            logger.addHandler(file_handler)
