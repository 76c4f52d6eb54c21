import os
import sys
import logging
from typing import List, Optional


__version__ = '1.0.0'

PROJECT_NAME = 'GPG Cloud Backup'

logger = logging.getLogger(__name__)


class _BelowLevelFilter(logging.Filter):
    """Pass only records below a given level (keeps warnings off stdout)."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def configure_logging(log_file: Optional[str] = None, verbose: bool = False) -> List[logging.Handler]:
    """
    Configure run logging.

    Info goes to stdout, warnings and errors to stderr, and everything to the
    run log file when one is given.

    Returns:
        The handlers that were attached, for shutdown_logging()
    """
    log_level = logging.DEBUG if verbose else logging.INFO

    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handlers
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(log_level)
    stdout_handler.addFilter(_BelowLevelFilter(logging.WARNING))
    stdout_handler.setFormatter(console_formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(console_formatter)

    handlers = [stdout_handler, stderr_handler]

    # File handler
    if log_file:
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    logger.setLevel(logging.DEBUG)
    for handler in handlers:
        logger.addHandler(handler)

    logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return handlers


def shutdown_logging(handlers: List[logging.Handler]):
    """Detach and close handlers returned by configure_logging()."""
    for handler in handlers:
        logger.removeHandler(handler)
        try:
            handler.flush()
        finally:
            handler.close()
