"""Logging setup shared by the CLI and the sync jobs."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

import colorlog

from config import Config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = ("slack_sdk", "urllib3", "aiohttp", "sqlalchemy.engine", "asyncio")

_handlers: list = []


def _log_path(log_file: Optional[str]) -> Path:
    path = Path(log_file or Config.LOG_FILE)
    if not path.is_absolute():
        path = Config.BASE_DIR / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Install a colored console handler and a rotating file handler.

    Calling it again replaces the handlers installed by the previous call,
    so a long-lived process can switch level or file without duplicating
    output.
    """
    level = getattr(logging, (log_level or Config.LOG_LEVEL).upper(), logging.INFO)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s" + LOG_FORMAT,
        datefmt=DATE_FORMAT,
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        }
    ))
    console_handler.setLevel(level)

    file_handler = RotatingFileHandler(
        _log_path(log_file),
        maxBytes=Config.LOG_MAX_BYTES,
        backupCount=Config.LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    file_handler.setLevel(logging.DEBUG)

    root_logger = logging.getLogger()
    for handler in _handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _handlers[:] = [console_handler, file_handler]

    root_logger.setLevel(logging.DEBUG)
    for handler in _handlers:
        root_logger.addHandler(handler)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get logger for module."""
    return logging.getLogger(name)
