from __future__ import annotations

import logging
import os
import sys

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for long-running memforge processes.

    Detached watchers have stderr pointed at the sync log file, so plain timestamped
    lines are used there; an interactive terminal gets rich output.
    """

    name = (level or os.environ.get("MEMFORGE_LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    if sys.stderr.isatty():
        logging.basicConfig(
            level=resolved,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
            force=True,
        )
        return
    logging.basicConfig(level=resolved, format=LOG_FORMAT, stream=sys.stderr, force=True)
