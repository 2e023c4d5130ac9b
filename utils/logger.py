import logging
from typing import Optional, Union

from .loguru_config import setup_loguru


_LOGGER_INITIALIZED = False
ROOT_LOGGER_NAME = "AnimeConsole"


def setup_logger(name: str = ROOT_LOGGER_NAME, log_file: Optional[str] = "anime_console.log",
                 level: Union[str, int] = logging.INFO):
    """Set up the application logger (idempotent).

    Loguru owns the sinks; every stdlib logger propagates to the root handler
    installed by ``setup_loguru``.
    """
    global _LOGGER_INITIALIZED

    parent_logger = logging.getLogger(name)

    # If already configured, just adjust level if needed and exit
    if _LOGGER_INITIALIZED:
        parent_logger.setLevel(level)
        return parent_logger

    setup_loguru(log_level=level, log_file=log_file, logger_name=name)

    parent_logger.setLevel(level)
    parent_logger.propagate = True

    _LOGGER_INITIALIZED = True

    parent_logger.debug("Parent logger initialized - Log file: %s", log_file or "<console only>")

    return parent_logger


def get_module_logger(module_name: str) -> logging.Logger:
    """Get a logger for a specific module that uses standardized configuration."""
    module_logger = logging.getLogger(module_name)
    module_logger.propagate = True
    return module_logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Get an existing logger instance."""
    return logging.getLogger(name)
