"""
Logging configuration.
One package logger with a rotating file handler under LOG_DIR and a console handler.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from card_application.config import get_settings

ROOT_LOGGER_NAME = "card_application"

_logger: Optional[logging.Logger] = None


def setup_logging() -> logging.Logger:
    """Configure the package logger. Safe to call more than once."""
    global _logger

    settings = get_settings()
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL.upper())
    logger.handlers.clear()
    logger.propagate = False

    log_dir = Path(settings.LOG_DIR)
    file_error: Optional[OSError] = None
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "server.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)
    except OSError as exc:
        file_error = exc

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(levelname)-8s | %(message)s"))
    logger.addHandler(console_handler)

    if file_error is not None:
        logger.warning(f"File logging disabled, console only: {file_error}")

    _logger = logger
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger for a module (e.g. get_logger(__name__))."""
    global _logger

    if _logger is None:
        _logger = setup_logging()

    if name.startswith(ROOT_LOGGER_NAME + "."):
        name = name[len(ROOT_LOGGER_NAME) + 1:]
    return _logger.getChild(name)
