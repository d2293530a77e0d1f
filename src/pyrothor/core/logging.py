"""Logging setup shared by the CLI and library code."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(
    *,
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """Configure root logging based on CLI flags.

    Console level precedence:
    - quiet → ERROR
    - debug → DEBUG
    - verbose → INFO
    - default → WARNING

    When ``log_file`` is given, INFO and above (DEBUG with ``debug``) are
    also appended there regardless of the console level, so unattended
    runs on endpoints leave a trail. Does nothing if the root logger
    already has handlers.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    if quiet:
        level = logging.ERROR
    elif debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    console = logging.StreamHandler()
    console.setLevel(level)
    handlers: List[logging.Handler] = [console]

    file_error: Optional[OSError] = None
    if log_file is not None:
        file_level = logging.DEBUG if debug else logging.INFO
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            file_error = e
        else:
            file_handler.setLevel(file_level)
            handlers.append(file_handler)
            level = min(level, file_level)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)

    if file_error is not None:
        get_logger(__name__).warning(f"Cannot write log file {log_file}: {file_error}")


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module-level logger."""

    return logging.getLogger(name if name is not None else __name__)
