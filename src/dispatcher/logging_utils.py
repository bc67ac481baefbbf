"""Logging setup for the dispatcher entry points.

Library modules only create module loggers; handlers are installed here, once,
by the CLI and the API server.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_CONFIGURED = False


def configure_logging(level: int | str = logging.INFO, console: Console | None = None) -> None:
    """Route ``dispatcher.*`` loggers through a rich handler."""
    global _CONFIGURED

    logger = logging.getLogger("dispatcher")
    logger.setLevel(level)
    if _CONFIGURED:
        return

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    _CONFIGURED = True
