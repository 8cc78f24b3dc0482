"""Logging setup for the command line tools."""

from __future__ import annotations

import logging

CONSOLE_FORMAT = "%(message)s"
FILE_FORMAT = "[%(asctime)s] %(levelname)s: %(name)s: %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

_VERBOSITY = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}


def configure_logging(verbosity: int = 0, log_file: str | None = None) -> None:
    """Configure the root logger.

    Console output follows ``-v`` flags (warning, info, debug). The optional
    log file always receives debug records.
    """
    level = _VERBOSITY.get(min(verbosity, 2), logging.WARNING)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    handlers: list[logging.Handler] = [console]

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, FILE_DATEFMT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        handlers=handlers,
        force=True,
    )
