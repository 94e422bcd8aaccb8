from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    """Route stdlib logging through rich on stderr.

    Safe to call more than once; the previous root handlers are replaced.
    """
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
    )
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # websockets logs every keepalive at DEBUG
    logging.getLogger("websockets").setLevel(max(logging.INFO, logging.getLogger().level))
