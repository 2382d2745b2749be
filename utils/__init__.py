"""
Utils Module
Shared logging and exception helpers.
"""
from .logger import PACKAGE_LOGGERS, setup_logger, setup_package_logging, get_logger
from .exceptions import (
    TrendreelError,
    ConfigurationError,
    DeadLetterError,
    ProducerError,
    UnknownProducerError,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "setup_package_logging",
    "PACKAGE_LOGGERS",
    "TrendreelError",
    "ConfigurationError",
    "DeadLetterError",
    "ProducerError",
    "UnknownProducerError",
]
