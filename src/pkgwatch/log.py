"""Logging setup for the command line."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO", console: Console | None = None) -> None:
    """Route pkgwatch log records through a rich handler.

    Args:
        level: Logging level name.
        console: Console to write to. Defaults to stderr.
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    log = logging.getLogger("pkgwatch")
    log.handlers.clear()
    log.addHandler(handler)
    log.setLevel(level.upper())
