"""Logging setup."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False) -> None:
    """Configure the root logger.

    Menus own stdout, so records go to stderr. Only warnings show unless `verbose`,
    which also lets GitPython's command trace through.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)
    logging.getLogger("git").setLevel(logging.DEBUG if verbose else logging.WARNING)
