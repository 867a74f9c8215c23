"""Console and file logging for the ``loan_ensemble`` package and its scripts."""

import logging
from pathlib import Path
from typing import Optional, Union

from .config import config

ROOT_LOGGER_NAME = 'loan_ensemble'
DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown logging level: {level}")
    return resolved


def setup_logging(
    level: Optional[Union[str, int]] = None,
    log_file: Optional[Union[str, Path]] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Configure the package logger.

    Unset arguments are read from the ``logging`` section of the default
    configuration. Calling this again replaces the previous handlers, so
    scripts can reconfigure after parsing their arguments.

    Args:
        level: Level name or number, e.g. ``'INFO'``
        log_file: Optional file that receives the same records as the console
        format_string: Record format

    Returns:
        The ``loan_ensemble`` logger
    """
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(_resolve_level(level or config.get('logging.level', 'INFO')))

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(format_string or config.get('logging.format', DEFAULT_FORMAT))
    handlers = [logging.StreamHandler()]

    log_file = log_file or config.get('logging.file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a script or component, nested under the package logger."""
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')
