"""
Logging configuration for viraqc.

Console output is coloured by level when attached to a terminal; an
optional log file receives plain, timestamped records.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    GRAY = "\033[0;90m"


class ColoredFormatter(logging.Formatter):
    """
    Formatter that wraps the level name in brackets, coloured by level.
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.GRAY,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.RED,
    }

    def __init__(self, fmt: Optional[str] = None, use_colors: bool = True):
        super().__init__(fmt or "%(message)s")
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        # Format a copy so other handlers still see the bare level name
        record = logging.makeLogRecord(record.__dict__)
        if self.use_colors:
            color = self.LEVEL_COLORS.get(record.levelno, Colors.RESET)
            record.levelname = f"{color}[{record.levelname}]{Colors.RESET}"
        else:
            record.levelname = f"[{record.levelname}]"

        return super().format(record)


def setup_logging(
    name: str = "viraqc",
    level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    use_colors: bool = True,
    verbose: bool = False,
) -> logging.Logger:
    """
    Set up the viraqc logger hierarchy.

    Module loggers (``viraqc.qc.ingest`` and so on) propagate here, so one
    call configures the whole package.

    Args:
        name: Logger name (default: "viraqc")
        level: Logging level (default: INFO)
        log_file: Optional path to log file
        use_colors: Use colored output for console (default: True)
        verbose: Enable debug output (default: False)

    Returns:
        Configured logger instance
    """
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Clear existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter("%(levelname)s %(message)s", use_colors=use_colors))
    logger.addHandler(console_handler)

    # File handler (plain text, no colors)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = "viraqc") -> logging.Logger:
    """
    Get a viraqc logger, configuring defaults on first use.

    Args:
        name: Logger name (default: "viraqc")

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers and not logging.getLogger("viraqc").handlers:
        setup_logging("viraqc")

    return logger
