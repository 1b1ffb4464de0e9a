"""Logging helpers shared by the chat service entry points."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_FILENAME = "chatbot.log"

_LOGGING_CONFIGURED = False


def setup_logging(log_dir: Optional[str] = None, level: int = logging.INFO) -> None:
    """Configure console logging and, when ``log_dir`` is given, a log file.

    Calling this more than once is harmless; only the first call installs
    handlers.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    formatter = logging.Formatter(LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path / LOG_FILENAME, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    _LOGGING_CONFIGURED = True
    logging.getLogger(__name__).debug("Logging configured (log_dir=%s)", log_dir)
