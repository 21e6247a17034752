"""Logging setup for hostprobe."""

import logging
import logging.handlers
import os

ROOT_LOGGER_NAME = "hostprobe"
DEFAULT_LEVEL_NAME = "INFO"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3


def _get_log_level(level_name: str, default_level: int = logging.INFO) -> int:
    """Convert a level name such as 'DEBUG' into a logging constant."""
    level = logging.getLevelName(str(level_name).upper())
    if isinstance(level, int):
        return level
    logging.getLogger(ROOT_LOGGER_NAME).warning(
        "Invalid log level name '%s'. Using %s.",
        level_name,
        logging.getLevelName(default_level),
    )
    return default_level


def setup_logger(
    level: str = DEFAULT_LEVEL_NAME,
    log_file: str | None = None,
    log_format: str = DEFAULT_LOG_FORMAT,
) -> logging.Logger:
    """
    Configure the package logger with a console handler and an optional file.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        level: Level name for both handlers.
        log_file: Path of a rotating log file, or None for console only.
        log_format: Format string for all handlers.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(_get_log_level(level))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        directory = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(directory, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger nested under the package logger."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
