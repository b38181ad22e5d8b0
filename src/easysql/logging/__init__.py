"""EasySQL structured logging.

Classes:
    StructuredLogger: Main structured logging interface
    PerformanceLogger: Operation timing and aggregates
    LoggerFactory: Logger creation and configuration

Example:
    >>> from easysql.logging import get_logger, get_performance_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Connection opened", connection_id="c1")
"""

from .factory import (
    LoggerFactory,
    configure_logging,
    get_factory,
    get_logger,
    get_performance_logger,
    shutdown_logging,
)
from .formatters import JSONFormatter, TextFormatter, get_formatter
from .performance import PerformanceLogger, PerformanceMetrics, TimingContext
from .structured import LogContext, StructuredLogger, redact_secrets

__all__ = [
    # Factory and configuration
    "LoggerFactory",
    "configure_logging",
    "get_factory",
    "get_logger",
    "get_performance_logger",
    "shutdown_logging",

    # Formatters
    "JSONFormatter",
    "TextFormatter",
    "get_formatter",

    # Performance logging
    "PerformanceLogger",
    "PerformanceMetrics",
    "TimingContext",

    # Structured logging
    "LogContext",
    "StructuredLogger",
    "redact_secrets",
]
