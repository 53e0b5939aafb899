# pyright: standard

"""btrfs-rotate: btrfs_rotate/__logger__.py
A common logger for displaying through rich.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Initialize basic console and handler
cons = Console(stderr=True)
rich_handler = RichHandler(console=cons, show_path=False)
# Package logger, parent of every module logger
logger = logging.getLogger("btrfs_rotate")
logger.setLevel(logging.INFO)


def create_logger(level="INFO", console=None) -> None:
    """Helper function to setup logging for a run.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        console: Optional rich Console to render into, stderr by default
    """
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = console or Console(stderr=True)
    rich_handler = RichHandler(console=cons, show_path=False)

    logger.handlers.clear()
    logger.propagate = False
    logger.addHandler(rich_handler)
    logger.setLevel(level)

    logging.basicConfig(
        format="%(message)s",
        datefmt="%H:%M:%S",
        level=level,
        handlers=[rich_handler],
        force=True,
    )
