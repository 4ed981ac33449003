"""Process-wide logging for the takeover guard.

    from common.logging_utils import get_logger
    logger = get_logger(__name__)
    logger.info("risk assessed user_id=%s level=%s", user_id, level)

The first `get_logger` call installs a stdout handler and a rotating file handler
on the root logger. Timestamps are UTC so log lines line up with the activity
timestamps they describe.

Environment:
  TAKEOVERGUARD_LOG_LEVEL   level name or number (default INFO)
  TAKEOVERGUARD_LOG_DIR     directory for takeoverguard.log (default <repo>/logs)
  TAKEOVERGUARD_LOG_FILE    set to 0/false/off to log to stdout only
"""

from __future__ import annotations

import logging
import os
import sys
import threading
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Final


LOG_LEVEL_ENV: Final[str] = "TAKEOVERGUARD_LOG_LEVEL"
LOG_DIR_ENV: Final[str] = "TAKEOVERGUARD_LOG_DIR"
LOG_FILE_ENV: Final[str] = "TAKEOVERGUARD_LOG_FILE"
LOG_FILE_NAME: Final[str] = "takeoverguard.log"
LOG_FORMAT: Final[str] = "%(asctime)sZ [%(levelname)s] %(name)s - %(message)s"

_LOCK: Final[threading.Lock] = threading.Lock()
_configured: bool = False


class _UTCFormatter(logging.Formatter):
    converter = time.gmtime


def _repo_root() -> Path:
    here = Path(__file__).resolve()
    for parent in here.parents:
        if (parent / "pyproject.toml").exists():
            return parent
    return here.parents[2]


def _level_from_env() -> int:
    text = (os.getenv(LOG_LEVEL_ENV) or "").strip()
    if not text:
        return logging.INFO
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text.upper())
    return level if isinstance(level, int) else logging.INFO


def _file_logging_enabled() -> bool:
    return (os.getenv(LOG_FILE_ENV) or "1").strip().lower() not in {"0", "false", "no", "off"}


def _log_path() -> Path:
    override = (os.getenv(LOG_DIR_ENV) or "").strip()
    log_dir = Path(override) if override else _repo_root() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / LOG_FILE_NAME


def _install_handlers() -> None:
    level = _level_from_env()
    formatter = _UTCFormatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")
    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, "stream", None) is sys.stdout for h in root.handlers):
        console = logging.StreamHandler(stream=sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        root.addHandler(console)

    if not _file_logging_enabled():
        return

    path = str(_log_path())
    if any(getattr(h, "baseFilename", None) == path for h in root.handlers):
        return
    rotating = RotatingFileHandler(
        path, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8", delay=True
    )
    rotating.setLevel(level)
    rotating.setFormatter(formatter)
    root.addHandler(rotating)


def get_logger(name: str) -> logging.Logger:
    global _configured
    if not _configured:
        with _LOCK:
            if not _configured:
                _install_handlers()
                _configured = True
    return logging.getLogger(name)
