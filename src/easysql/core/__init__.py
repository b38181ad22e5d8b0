"""EasySQL core infrastructure.

This package provides the foundational pieces of the EasySQL connection layer:
base component classes, the exception hierarchy and small utilities.

Modules:
    base: Base component classes
    exceptions: Exception hierarchy
    utils: Utility functions

Example:
    >>> from easysql.core import AsyncComponent
    >>> from easysql.core.exceptions import ConnectionLost
"""

from .base import AsyncComponent, BaseComponent
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConnectionError,
    ConnectionLost,
    DecryptionFailed,
    EasySQLException,
    ErrorCodes,
    StatementError,
    TunnelError,
    UnsupportedOperation,
    ValidationError,
    create_error_from_exception,
)
from .utils import StringUtils, TimerContext, ValidationUtils, measure_time

__all__ = [
    # Base classes
    "BaseComponent",
    "AsyncComponent",

    # Exceptions
    "EasySQLException",
    "ConfigurationError",
    "ValidationError",
    "ConnectionError",
    "TunnelError",
    "AuthenticationError",
    "ConnectionLost",
    "UnsupportedOperation",
    "StatementError",
    "DecryptionFailed",
    "ErrorCodes",
    "create_error_from_exception",

    # Utilities
    "ValidationUtils",
    "StringUtils",
    "TimerContext",
    "measure_time",
]
