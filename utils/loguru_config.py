"""
Module Name: loguru_config.py
Description:
    Sets up Loguru sinks and bridges standard logging records into them so that
    modules can keep using ``logging.getLogger`` style loggers.

Location:
    /utils/loguru_config.py

"""

# Bottleneck: console sink formatting on high-volume poll logs; keep levels sane.

import logging
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger


def _standardize_name(raw_name: Union[str, int]) -> str:
    """Normalize logger names to dotted, title-cased segments (OperationTracking.PollLoop)."""
    if not raw_name:
        return "AnimeConsole"
    if isinstance(raw_name, int):
        return str(raw_name)

    normalized = str(raw_name).replace("\\", ".").replace("/", ".").replace("_", ".").replace(" ", ".")
    parts = [segment for segment in normalized.split(".") if segment]
    return ".".join(part[:1].upper() + part[1:] for part in parts)


class InterceptHandler(logging.Handler):
    """Route standard logging records into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_name == "emit":
            frame = frame.f_back
            depth += 1

        logger_name = _standardize_name(record.name)

        logger.bind(logger_name=logger_name).opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _coerce_level(level: Union[str, int]) -> Union[str, int]:
    if isinstance(level, str):
        return level.upper()
    if isinstance(level, int):
        return level
    try:
        return int(level)
    except (TypeError, ValueError):
        return "INFO"


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> "
    "| <level>{level: <8}</level> "
    "| <cyan>{extra[logger_name]}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} - {level} - {extra[logger_name]} - {message}"


def setup_loguru(
    log_level: Union[str, int] = "INFO",
    log_file: Optional[str] = "anime_console.log",
    logger_name: str = "AnimeConsole",
    log_dir: Optional[Path] = None,
):
    """Configure Loguru sinks and hook standard logging into Loguru.

    Passing ``log_file=None`` skips the file sink (used by the test-suite).
    """
    level = _coerce_level(log_level)

    # Reset existing Loguru configuration
    logger.remove()

    # Default logger name for direct Loguru usage
    logger.configure(extra={"logger_name": _standardize_name(logger_name)})

    # Console sink with color
    logger.add(
        sys.stdout,
        level=level,
        format=CONSOLE_FORMAT,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        colorize=True,
    )

    if log_file:
        target_dir = Path(log_dir) if log_dir else Path(__file__).resolve().parent.parent / "logs"
        target_dir.mkdir(parents=True, exist_ok=True)

        # Rotating file sink (plain text)
        logger.add(
            target_dir / log_file,
            level=level,
            format=FILE_FORMAT,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
            enqueue=True,
            backtrace=False,
            diagnose=False,
        )

    # Intercept standard logging
    logging.basicConfig(handlers=[InterceptHandler()], level=logging.NOTSET, force=True)
    logging.getLogger().setLevel(logging.NOTSET)

    # Quiet noisy third-party loggers we don't control
    for noisy in ("urllib3", "werkzeug", "engineio.server", "socketio.server"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger
