"""
Logging configuration and setup.

Console output is colorized by level; a plain-text file handler is added
when ``Settings.log_file`` is set. All PromptForge loggers live under the
``promptforge`` namespace so uvicorn's own loggers stay untouched.
"""

import logging
import sys
from pathlib import Path

from promptforge.config.settings import Settings

_CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter that adds color to console output."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with a colored level name."""
        # Work on a copy so the file handler still sees the bare level name
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = (
                f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
            )
        return super().format(record)


def setup_logging(settings: Settings) -> None:
    """
    Configure the ``promptforge`` logger tree from settings.

    Args:
        settings: Application settings containing log configuration
    """
    level = getattr(logging, settings.log_level)
    root_logger = logging.getLogger("promptforge")
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(fmt=_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(fmt=_FILE_FORMAT, datefmt=_DATE_FORMAT))
        root_logger.addHandler(file_handler)

    root_logger.propagate = False

    root_logger.info(f"Logging initialized - Level: {settings.log_level}")
    if settings.log_file:
        root_logger.info(f"Logging to file: {settings.log_file}")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Module names that already start with ``promptforge`` (the usual
    ``__name__`` case) are used as-is; anything else is nested under the
    ``promptforge`` namespace.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger attached to the ``promptforge`` tree
    """
    if name == "promptforge" or name.startswith("promptforge."):
        return logging.getLogger(name)
    return logging.getLogger(f"promptforge.{name}")
