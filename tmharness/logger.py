"""Logging setup for harness runs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT: str = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s: %(message)s"


def configure_logging(level: Union[str, int] = "INFO", log_file: Optional[Path] = None) -> None:
    """Send harness logs to stderr and, optionally, to *log_file*.

    Safe to call more than once; handlers from earlier calls are replaced.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    # urllib3 logs every connection at DEBUG; keep it quiet
    logging.getLogger("urllib3").setLevel(logging.WARNING)
