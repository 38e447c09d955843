"""
Logging Utilities

This module sets up logging for the project. Every module obtains its own
logger through ``setup_logger(__name__)``; ``configure_package_logging``
re-levels all of them at once from the ``logging`` config section.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER_NAME = "structured_icp"

_CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
_FILE_FORMAT = '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logger(name: str,
                 level: int = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path. If provided, logs will be written to this file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        _add_file_handler(logger, log_file, level)

    return logger


def _add_file_handler(logger: logging.Logger, log_file: str, level: int) -> None:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown logging level: {level}")
    return resolved


def configure_package_logging(level: Union[int, str] = logging.INFO,
                              log_file: Optional[str] = None) -> None:
    """
    Apply a level (and optional log file) to every logger of this package.

    Loggers are created lazily at import time by ``setup_logger``, so this
    walks the registered logger names and updates the ones under the package.

    Args:
        level: Logging level as int or name ("DEBUG", "INFO", ...)
        log_file: Optional log file shared by all package loggers
    """
    lvl = _resolve_level(level)
    manager = logging.Logger.manager
    names = [
        n for n in list(manager.loggerDict)
        if n == PACKAGE_LOGGER_NAME or n.startswith(PACKAGE_LOGGER_NAME + ".")
    ]
    for name in names:
        logger = logging.getLogger(name)
        logger.setLevel(lvl)
        for handler in logger.handlers:
            handler.setLevel(lvl)
        # Only loggers built by setup_logger get a file; their parents would log twice
        if log_file and logger.handlers:
            has_file = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename).resolve() == Path(log_file).resolve()
                for h in logger.handlers
            )
            if not has_file:
                _add_file_handler(logger, log_file, lvl)
