"""
Logging Configuration
=====================
One call to setup_logging() at process start configures the root logger:

    stderr  — coloured when attached to a terminal, plain otherwise
    file    — <LOG_DIR>/repair_<YYYYMMDD>.log, plain (skipped when LOG_DIR is empty)

Environment Variables:
    LOG_LEVEL — root level name (default: INFO)
    LOG_DIR   — directory for the dated log file (default: logs)

Chatty client libraries (httpx, docker, urllib3) are held at WARNING so
worker calls and container runs do not drown the attempt log.
"""
import logging
import os
import sys
from datetime import datetime
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_PROPAGATED = ("repair_orchestrator", "main", "uvicorn", "uvicorn.error", "uvicorn.access")
_QUIETED = ("httpx", "httpcore", "docker", "urllib3")


class ColoredFormatter(logging.Formatter):
    """Wraps each record in an ANSI colour chosen by level."""

    COLORS = {
        logging.DEBUG: "\x1b[36m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }
    RESET = "\x1b[0m"

    def __init__(self) -> None:
        super().__init__(LOG_FORMAT, datefmt=DATE_FORMAT)

    def format(self, record):
        text = super().format(record)
        color = self.COLORS.get(record.levelno)
        return f"{color}{text}{self.RESET}" if color else text


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level=None, log_dir: Optional[str] = None, color: Optional[bool] = None) -> None:
    """Configure root logging once; calling it again replaces the handlers."""
    level = _resolve_level(level if level is not None else os.getenv("LOG_LEVEL", "INFO"))
    if log_dir is None:
        log_dir = os.getenv("LOG_DIR", "logs")
    if color is None:
        color = sys.stderr.isatty()

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.setLevel(level)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(ColoredFormatter() if color else logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        path = os.path.join(log_dir, f"repair_{datetime.now().strftime('%Y%m%d')}.log")
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for name in _PROPAGATED:
        named = logging.getLogger(name)
        named.setLevel(level)
        named.propagate = True
    for name in _QUIETED:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root_logger.info(
        "Logging initialized at %s (console%s)",
        logging.getLevelName(level), f" + {log_dir}" if log_dir else "",
    )
