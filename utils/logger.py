"""
Logger Configuration
Unified logging setup for the pipeline engine.
"""
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.logging import RichHandler
from rich.console import Console


console = Console()

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_FORMAT_SIMPLE = "%(message)s"

LOG_DIR = Path(__file__).parent.parent / "logs"

ROOT_LOGGER_NAME = "trendreel"

PACKAGE_LOGGERS = ("orchestrator", "pipeline", "producers", "resilience", "storage")


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    use_rich: bool = True,
) -> logging.Logger:
    """
    Configure a logger.

    Args:
        name: logger name
        level: log level
        log_file: optional file name, written under ``logs/``
        use_rich: render console output through Rich

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # handlers are attached once per logger
    if logger.handlers:
        return logger

    if use_rich:
        console_handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
        )
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT_SIMPLE))
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_path = LOG_DIR / log_file

        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Return a logger, configuring it with defaults on first use."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        return setup_logger(name)

    return logger


def setup_package_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    use_rich: bool = True,
) -> List[logging.Logger]:
    """Attach the console handler to every package logger; module loggers propagate to them."""
    return [setup_logger(name, level=level, log_file=log_file, use_rich=use_rich) for name in PACKAGE_LOGGERS]
