from __future__ import annotations

import logging
from pathlib import Path
from typing import Final


DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILENAME: Final[str] = "bootstrap.log"


def configure_logging(level: int = logging.INFO, log_dir: str | None = None) -> None:
    """Configure standard library logging for the CLI.

    If log_dir is provided, logs are appended to '<log_dir>/bootstrap.log' as
    well as stderr, so an interrupted setup leaves a record of which steps
    finished before it stopped.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(Path(log_dir) / LOG_FILENAME, encoding="utf-8"))

    logging.basicConfig(level=level, format=DEFAULT_LOG_FORMAT, handlers=handlers, force=True)
    # urllib3 logs every connection at DEBUG/INFO; keep it quiet.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
