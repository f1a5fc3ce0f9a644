"""Logging setup shared by the CLI, the API server and the scheduler"""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional


ROOT_LOGGER_NAME = 'transcript_analytics'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Chatty third-party loggers held at WARNING while the package logs at INFO/DEBUG
NOISY_LIBRARIES = ('statsmodels', 'xgboost', 'httpx', 'multipart', 'matplotlib')


def _resolve_level(log_level) -> int:
    if isinstance(log_level, int):
        return log_level
    level = logging.getLevelName(str(log_level).upper())
    return level if isinstance(level, int) else logging.INFO


def _attach(logger: logging.Logger, handler: logging.Handler, level: int):
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_to_console: bool = True,
    quiet: Iterable[str] = NOISY_LIBRARIES,
) -> logging.Logger:
    """
    Configure the ``transcript_analytics`` logger hierarchy.

    Calling this again replaces the previous handlers, so the CLI can
    reconfigure per invocation without duplicating output. The file handler
    records DEBUG regardless of ``log_level``.

    Args:
        log_level: Level name (``'DEBUG'`` ... ``'CRITICAL'``) or numeric level;
            unknown names fall back to INFO
        log_file: Optional log file; parent directories are created
        log_to_console: Mirror records to stdout
        quiet: Logger names raised to WARNING

    Returns:
        The package root logger
    """
    level = _resolve_level(log_level)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if log_to_console:
        _attach(root, logging.StreamHandler(sys.stdout), level)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        _attach(root, logging.FileHandler(path, encoding='utf-8'), logging.DEBUG)

    root.setLevel(logging.DEBUG if log_file else level)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def setup_logging_from_config(config, level: Optional[str] = None, console: Optional[bool] = None) -> logging.Logger:
    """Apply the ``logging`` section of a ConfigLoader; arguments override it."""
    log_file = config.get('logging.file')
    return setup_logging(
        log_level=level or config.get('logging.level', 'INFO'),
        log_file=str(config.get_path('logging.file')) if log_file else None,
        log_to_console=config.get('logging.to_console', True) if console is None else console,
    )


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Return a logger; pass ``__name__`` so it nests under the package root."""
    return logging.getLogger(name)
