"""structlog wrapper with task-local context and secret redaction.

Every event passes through ``redact_secrets`` before it reaches structlog,
so profile passwords, SSH passphrases and credentials embedded in
connection strings never end up in a log file.

Example:
    >>> logger = StructuredLogger("easysql.supervisor")
    >>> with logger.context(connection_id="c1", engine="mysql"):
    ...     logger.info("Connection opened", tunneled=True)
"""

import logging
import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Generator, Mapping, Optional

import structlog

from ..core.exceptions import ValidationError

SENSITIVE_KEYS = frozenset({"password", "passphrase", "private_key", "secret", "ssh_password"})
REDACTED = "***"

_URI_CREDENTIALS = re.compile(r"(://[^:/@\s]+:)[^@\s]+@")
_DSN_PASSWORD = re.compile(r"(?i)\b(pwd|password)=(\{(?:[^}]|\}\})*\}|[^;]*)")


def _redact_text(text: str) -> str:
    text = _URI_CREDENTIALS.sub(rf"\g<1>{REDACTED}@", text)
    return _DSN_PASSWORD.sub(rf"\g<1>={REDACTED}", text)


def redact_secrets(event_dict: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``event_dict`` with credentials masked.

    Values under a sensitive key are replaced outright. Strings elsewhere
    have URI userinfo passwords (``mongodb://u:p@h``) and ODBC ``PWD=``
    entries masked. Nested mappings are walked.
    """
    redacted: Dict[str, Any] = {}
    for key, value in event_dict.items():
        if value and str(key).lower() in SENSITIVE_KEYS:
            value = REDACTED
        elif isinstance(value, Mapping):
            value = redact_secrets(value)
        elif isinstance(value, str) and ("://" in value or "=" in value):
            value = _redact_text(value)
        redacted[key] = value
    return redacted


class LogContext:
    """Key/value context held in a ``ContextVar``.

    Tasks started while a value is set see a snapshot of it; writes made
    inside a task stay in that task.
    """

    def __init__(self, name: str = "easysql_log_context") -> None:
        self._var: ContextVar[Dict[str, Any]] = ContextVar(name, default={})

    def get(self, key: str, default: Any = None) -> Any:
        return self._var.get().get(key, default)

    def get_all(self) -> Dict[str, Any]:
        return dict(self._var.get())

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, context: Dict[str, Any]) -> None:
        self._var.set({**self._var.get(), **context})

    def replace(self, context: Dict[str, Any]) -> None:
        self._var.set(dict(context))

    def clear(self) -> None:
        self.replace({})


class StructuredLogger:
    """Named logger adding bound fields, task context and a correlation id.

    Example:
        >>> tunnel_log = StructuredLogger("easysql.tunnel").bind(ssh_host="bastion")
        >>> tunnel_log.warning("Forward refused", remote_port=5432)
    """

    def __init__(
        self,
        name: str,
        *,
        level: str = "INFO",
        enable_correlation: bool = True,
        auto_correlation: bool = True,
    ) -> None:
        self.name = name
        self._enable_correlation = enable_correlation
        self._auto_correlation = auto_correlation
        self._bound: Dict[str, Any] = {}
        self._context = LogContext(f"easysql_ctx_{name}_{id(self)}")
        self._logger = structlog.get_logger(name)
        self._stdlib_logger = logging.getLogger(name)
        self._stdlib_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

        if enable_correlation and auto_correlation:
            self._correlation_id()

    def _correlation_id(self) -> str:
        current = self.get_correlation_id()
        if current:
            return current
        new_id = str(uuid.uuid4())
        self._context.set("correlation_id", new_id)
        return new_id

    def _event(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        event = {"logger": self.name, **self._bound, **self._context.get_all()}
        if self._enable_correlation:
            event["correlation_id"] = self._correlation_id()
        event.update(fields)
        return redact_secrets(event)

    def _emit(self, method: str, message: str, fields: Dict[str, Any], **extra: Any) -> None:
        getattr(self._logger, method)(message, **extra, **self._event(fields))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._emit("debug", message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._emit("info", message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._emit("warning", message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._emit("error", message, kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._emit("critical", message, kwargs)

    def exception(self, message: str, exc_info: bool = True, **kwargs: Any) -> None:
        """Error line carrying the traceback of the exception being handled."""
        self._emit("error", message, kwargs, exc_info=exc_info)

    @contextmanager
    def context(self, **context_data: Any) -> Generator[None, None, None]:
        """Add fields to every line logged inside the block."""
        saved = self._context.get_all()
        self._context.update(context_data)
        try:
            yield
        finally:
            self._context.replace(saved)

    def bind(self, **context_data: Any) -> "StructuredLogger":
        """New logger that always carries the current context plus ``context_data``."""
        child = StructuredLogger(
            self.name,
            level=self.get_level(),
            enable_correlation=self._enable_correlation,
            auto_correlation=False,
        )
        child._bound = {**self.get_context(), **context_data}
        return child

    def set_level(self, level: str) -> None:
        number = getattr(logging, str(level).upper(), None)
        if not isinstance(number, int):
            raise ValidationError(f"Unknown log level: {level}", code="INVALID_LOG_LEVEL")
        self._stdlib_logger.setLevel(number)

    def get_level(self) -> str:
        return logging.getLevelName(self._stdlib_logger.getEffectiveLevel())

    def set_correlation_id(self, correlation_id: str) -> None:
        if self._enable_correlation:
            self._context.set("correlation_id", correlation_id)

    def get_correlation_id(self) -> Optional[str]:
        if not self._enable_correlation:
            return None
        return self._context.get("correlation_id") or self._bound.get("correlation_id")

    def get_context(self) -> Dict[str, Any]:
        return {**self._bound, **self._context.get_all()}

    def clear_context(self) -> None:
        """Drop task context; a fresh correlation id is issued when enabled."""
        self._context.clear()
        if self._enable_correlation and self._auto_correlation:
            self._correlation_id()

    def __repr__(self) -> str:
        return f"StructuredLogger({self.name!r}, level={self.get_level()}, correlation={self._enable_correlation})"
