"""
Logging setup and helpers.

Single-line colored console output, with timing and bundle metadata
appended when a record carries it.
"""

import logging
import time
import sys
from datetime import datetime
from typing import Optional, Any


class ColoredFormatter(logging.Formatter):
    """Console formatter with per-level colors and trailing extras."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    # Record attributes rendered after the message, in this order
    EXTRA_KEYS = ('duration_ms', 'file_count', 'bytes', 'checksum', 'device')

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        level_str = f"{color}{record.levelname:8}{self.RESET}"
        location = f"{record.module}.{record.funcName}" if record.funcName != '<module>' else record.module

        message = record.getMessage()

        extras = []
        for key in self.EXTRA_KEYS:
            if not hasattr(record, key):
                continue
            value = getattr(record, key)
            if key == 'duration_ms':
                extras.append(f"duration={value:.1f}ms")
            elif key == 'file_count':
                extras.append(f"files={value}")
            elif key == 'checksum':
                extras.append(f"sha={str(value)[:12]}")
            else:
                extras.append(f"{key}={value}")

        extra_str = f" [{', '.join(extras)}]" if extras else ""
        text = f"{timestamp} | {level_str} | {location:30} | {message}{extra_str}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def setup_logging(level: str = "INFO") -> None:
    """
    Set up console logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter())
    handler.setLevel(getattr(logging, level.upper()))

    root.setLevel(getattr(logging, level.upper()))
    root.addHandler(handler)

    logging.getLogger('uvicorn').setLevel(logging.INFO)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('aiosqlite').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogTimer:
    """
    Context manager that logs start and completion of an operation.

    Usage:
        with LogTimer(logger, f"Render {uuid}") as timer:
            ...
            timer.add_info("file_count", 3)
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.DEBUG,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time: Optional[float] = None
        self.extra_info: dict[str, Any] = {}

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.log(self.level, f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000
        extra = {'duration_ms': duration_ms}
        extra.update(self.extra_info)

        if exc_type is not None:
            self.logger.warning(f"Failed: {self.operation} - {exc_val}", extra=extra)
        else:
            self.logger.log(self.level, f"Completed: {self.operation}", extra=extra)
        return False

    def add_info(self, key: str, value: Any) -> None:
        """Add extra info to the completion log."""
        self.extra_info[key] = value
