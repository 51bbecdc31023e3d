"""
Logging setup for the recorder.

Console output always; an optional rotating log file when a path is given.
Modules obtain loggers through get_logger(__name__) so everything lands
under the "g4recorder" namespace.
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Union

ROOT_LOGGER = "g4recorder"

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"


def parse_size(size: Union[str, int]) -> int:
    """Parse sizes like '10MB', '512KB' or a plain byte count."""
    if isinstance(size, int):
        return size
    s = size.strip().upper()
    if s.endswith("KB"):
        return int(s[:-2]) * 1024
    if s.endswith("MB"):
        return int(s[:-2]) * 1024 * 1024
    if s.endswith("GB"):
        return int(s[:-2]) * 1024 * 1024 * 1024
    return int(s)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    max_file_size: Union[str, int] = "10MB",
    backup_count: int = 5,
) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Re-running setup (tests, repeated CLI calls) must not stack handlers.
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=parse_size(max_file_size),
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)

    return root


def get_logger(name: str) -> logging.Logger:
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
