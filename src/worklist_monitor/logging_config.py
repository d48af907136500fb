"""
Logging setup for the CLI. Library modules only ever call `logging.getLogger(__name__)`.
"""

import logging
import os
from pathlib import Path
from typing import Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# Playwright's driver chatter and asyncio's selector messages drown out per-account progress.
_QUIET_LOGGERS = ("playwright", "asyncio")


def configure_logging(level: str = "INFO", file_path: Optional[str] = None) -> None:
    """
    Send monitor logs to stderr and, when `file_path` is set, append them to that file as well
    so scheduled runs leave one log that spans every check.

    Safe to call twice: the CLI configures once from LOG_LEVEL, then again from the loaded config.
    """
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if file_path:
        log_path = Path(file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, handlers=handlers, force=True)

    quiet_level = (os.getenv("NOISY_LOG_LEVEL") or "WARNING").upper()
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
