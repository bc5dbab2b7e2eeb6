"""
Shared console and logging setup used for all user-facing output.
"""

import logging

from rich.console import Console

console = Console()


def configure_logging(verbose: bool = False) -> None:
    """Send module loggers to stderr, at DEBUG when verbose."""
    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(message)s",
        level=logging.DEBUG if verbose else logging.WARNING,
    )
    # pymongo's own debug output drowns out the bootstrap steps
    logging.getLogger("pymongo").setLevel(logging.WARNING)
