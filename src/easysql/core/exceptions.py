"""Exception hierarchy for the connection and adapter layer.

Every error raised by EasySQL carries a ``code`` (defaulting to the class
name), a ``context`` dict for structured logs, and the driver exception that
caused it. ``message`` is written to be shown to the user unchanged.

Example:
    >>> try:
    ...     adapter = await supervisor.resolve("conn-1")
    ... except ConnectionLost as e:
    ...     logger.error("Connection lost", error_code=e.code, **e.context)
"""

import builtins
from typing import Any, Dict, Optional, Sequence, Tuple, Type


class EasySQLException(Exception):
    """Root of the hierarchy.

    Example:
        >>> raise StatementError(
        ...     "Unknown column 'x'",
        ...     code=ErrorCodes.QUERY_EXECUTION_FAILED,
        ...     context={"connection_id": "c1"},
        ... )
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message: str = message
        self.code: str = code or type(self).__name__
        self.context: Dict[str, Any] = dict(context or {})
        self.cause: Optional[Exception] = cause

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, code={self.code!r}, "
            f"context={self.context!r}, cause={self.cause!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(EasySQLException):
    """Settings or a profile cannot be used."""


class ValidationError(ConfigurationError):
    """A field or request argument is out of range or missing."""


class ConnectionError(EasySQLException):
    """A handle could not be opened. Not related to the builtin of the same name."""


class TunnelError(ConnectionError):
    """SSH authentication, forwarding or local port allocation failed."""


class AuthenticationError(ConnectionError):
    """The database rejected the credentials."""


class ConnectionLost(ConnectionError):
    """Unknown connection id, or a dead handle that could not be rebuilt."""


class UnsupportedOperation(EasySQLException):
    """The engine has no equivalent for the requested operation."""


class StatementError(EasySQLException):
    """The engine rejected a query, DML or DDL statement."""


class DecryptionFailed(EasySQLException):
    """No legacy cipher produced a plausible plaintext."""


class ErrorCodes:
    """Codes attached to raised errors, grouped by failure area."""

    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_VALIDATION_FAILED = "CONFIG_VALIDATION_FAILED"
    UNSUPPORTED_ENGINE = "UNSUPPORTED_ENGINE"

    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    CONNECTION_LOST = "CONNECTION_LOST"
    NOT_CONNECTED = "NOT_CONNECTED"
    AUTH_FAILED = "AUTH_FAILED"

    SSH_AUTH_FAILED = "SSH_AUTH_FAILED"
    SSH_CONNECT_FAILED = "SSH_CONNECT_FAILED"
    SSH_FORWARD_REFUSED = "SSH_FORWARD_REFUSED"
    PORT_RANGE_EXHAUSTED = "PORT_RANGE_EXHAUSTED"

    QUERY_EXECUTION_FAILED = "QUERY_EXECUTION_FAILED"
    METADATA_EXTRACTION_FAILED = "METADATA_EXTRACTION_FAILED"
    DDL_FAILED = "DDL_FAILED"

    OPERATION_NOT_SUPPORTED = "OPERATION_NOT_SUPPORTED"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"


# First isinstance match wins.
_BUILTIN_MAPPING: Sequence[Tuple[Type[BaseException], Type[EasySQLException]]] = (
    (ConnectionRefusedError, ConnectionError),
    (ConnectionResetError, ConnectionLost),
    (BrokenPipeError, ConnectionLost),
    (builtins.TimeoutError, ConnectionError),
    (FileNotFoundError, ConfigurationError),
    (NotImplementedError, UnsupportedOperation),
    (ValueError, ValidationError),
    (TypeError, ValidationError),
)


def create_error_from_exception(
    exc: Exception,
    message: Optional[str] = None,
    code: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> EasySQLException:
    """Wrap a builtin or driver exception in the closest EasySQL type.

    EasySQL exceptions are returned unchanged. Unmapped types become a plain
    ``EasySQLException``; an empty message falls back to the type name.

    Example:
        >>> create_error_from_exception(ConnectionRefusedError(), code=ErrorCodes.CONNECTION_REFUSED)
        ConnectionError(message='ConnectionRefusedError', code='CONNECTION_REFUSED', ...)
    """
    if isinstance(exc, EasySQLException):
        return exc

    target = next(
        (mapped for source, mapped in _BUILTIN_MAPPING if isinstance(exc, source)),
        EasySQLException,
    )
    return target(
        message or str(exc) or type(exc).__name__,
        code=code,
        context=context,
        cause=exc,
    )
