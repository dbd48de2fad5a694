"""
Logging setup for scripts and long-running sessions.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


LOGGER = logging.getLogger("flood_mapper")
FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"


def configure_logging(
    out_dir: Optional[Path] = None,
    log_file: str = "",
    enabled: bool = True,
    append: bool = False,
    level: int = logging.INFO,
) -> Optional[Path]:
    """
    Send ``flood_mapper`` records to stdout and, when enabled, to a UTF-8 file.

    Returns the log file path, or None when only stdout is used.
    """
    LOGGER.setLevel(level)
    LOGGER.handlers.clear()

    formatter = logging.Formatter(FORMAT)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    LOGGER.addHandler(stream_handler)
    LOGGER.propagate = False

    if not enabled and not log_file:
        return None

    if log_file:
        log_path = Path(log_file)
    else:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = Path(out_dir or ".") / f"run_{stamp}.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, mode="a" if append else "w", encoding="utf-8")
    file_handler.setFormatter(formatter)
    LOGGER.addHandler(file_handler)
    LOGGER.info("Logging to: %s", log_path)
    return log_path
