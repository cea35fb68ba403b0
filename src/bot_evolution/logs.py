"""Logging setup shared by the CLI entry points."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.logging import RichHandler

NOISY_LOGGERS = ("urllib3", "requests")


def setup_logging(level: int | str = logging.INFO, log_file: Path | None = None) -> None:
    """Configure the root logger with a Rich console handler (+ optional plain file)."""
    handlers: list[logging.Handler] = [
        RichHandler(markup=False, rich_tracebacks=True, show_path=False, log_time_format="%H:%M:%S")
    ]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        handlers.append(file_handler)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError("Unknown log level")
    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
