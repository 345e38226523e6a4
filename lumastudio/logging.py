import logging
import os
import threading
import time
from collections import deque
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .config import resolve_path

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(message)s"
LOG_FILE_PATTERN = "*_lumastudio_pid*.log"
LOG_FILE_NAME = f"{time.strftime('%Y%m%d_%H%M%S', time.localtime())}_lumastudio_pid{os.getpid()}.log"

LOGGER = logging.getLogger("lumastudio")
_LOCK = threading.Lock()
# (log file, level) the handlers were last built for.
_CONFIGURED: Optional[Tuple[Path, int]] = None


def logs_dir(settings: Dict[str, Any], base_dir: Path) -> Path:
    return resolve_path(str(settings.get("paths", {}).get("logs_dir", "logs")), base_dir)


def latest_log_file(settings: Dict[str, Any], base_dir: Path) -> Optional[Path]:
    directory = logs_dir(settings, base_dir)
    if not directory.exists():
        return None
    candidates = [path for path in directory.glob(LOG_FILE_PATTERN) if path.is_file()]
    if not candidates:
        return None
    return max(candidates, key=lambda path: path.stat().st_mtime)


def tail_log_file(path: Path, max_lines: int = 200) -> List[str]:
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        return [line.rstrip("\n") for line in deque(handle, maxlen=max(1, max_lines))]


def _build_handlers(log_file: Path, level: int) -> List[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        filename=str(log_file),
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    handlers: List[logging.Handler] = [file_handler, logging.StreamHandler()]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def setup_logger(settings: Dict[str, Any], base_dir: Path) -> Path:
    """Point the ``lumastudio`` logger at this process's log file. Safe to call on every settings change."""
    global _CONFIGURED
    log_file = logs_dir(settings, base_dir) / LOG_FILE_NAME
    level_name = str(settings.get("logging", {}).get("level", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with _LOCK:
        if _CONFIGURED == (log_file, level) and LOGGER.handlers:
            return log_file
        for handler in list(LOGGER.handlers):
            LOGGER.removeHandler(handler)
            handler.close()
        LOGGER.setLevel(level)
        LOGGER.propagate = False
        for handler in _build_handlers(log_file, level):
            LOGGER.addHandler(handler)
        _CONFIGURED = (log_file, level)
    LOGGER.info("logger initialized file=%s level=%s", log_file, level_name)
    return log_file
