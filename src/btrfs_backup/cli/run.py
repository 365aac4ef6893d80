"""Run and test commands: execute a backup run or only the pre-flight checks."""

import logging

from ..__util__ import AbortError
from ..core import Orchestrator
from ..core.orchestrator import RULE
from .common import cancel_on_signals

logger = logging.getLogger(__name__)


def execute_backup(config, orchestrator=None) -> int:
    """Execute a full backup run.

    Args:
        config: Resolved run configuration
        orchestrator: Pre-built orchestrator (defaults to one for ``config``)

    Returns:
        Exit code (0 when every subvolume succeeded or was skipped)
    """
    orchestrator = orchestrator or Orchestrator(config)

    with cancel_on_signals(orchestrator.cancel_event):
        try:
            summary = orchestrator.run()
        except AbortError as e:
            logger.info(RULE)
            logger.error("Backup aborted: %s", e)
            logger.info(RULE)
            return 1

    return 0 if summary.success else 1


def execute_test(config, orchestrator=None) -> int:
    """Run the local and remote pre-flight checks without touching snapshots."""
    orchestrator = orchestrator or Orchestrator(config)

    try:
        result = orchestrator.preflight()
    except AbortError as e:
        logger.error("Connection test failed: %s", e)
        return 1

    if result.warnings:
        logger.warning("Connection tests passed with %d warning(s)", len(result.warnings))
    else:
        logger.info("All connection tests passed!")
    return 0
