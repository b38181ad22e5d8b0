"""stdlib formatters for handlers attached to the ``easysql`` logger.

Attributes set on a record through ``extra=`` are emitted as fields, after
the same credential masking applied to structlog events.

Example:
    >>> handler.setFormatter(get_formatter("text", colors=True))
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from .structured import redact_secrets

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}


def _record_extras(record: logging.LogRecord, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    skip = _RECORD_ATTRS.union(exclude)
    extras = {
        key: value
        for key, value in vars(record).items()
        if key not in skip and not key.startswith("_")
    }
    return redact_secrets(extras)


def _local_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created)


class JSONFormatter(logging.Formatter):
    """One compact JSON object per record.

    ``timestamp_format`` is ``"iso"`` or ``"unix"``. Values json cannot
    encode are written with ``str``.
    """

    def __init__(
        self,
        *,
        timestamp_format: str = "iso",
        include_location: bool = False,
        exclude_fields: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__()
        self.timestamp_format = timestamp_format
        self.include_location = include_location
        self.exclude_fields = frozenset(exclude_fields or ())

    def _timestamp(self, record: logging.LogRecord) -> Any:
        if self.timestamp_format == "unix":
            return record.created
        return _local_time(record).isoformat()

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {"message": record.getMessage()}
        if "timestamp" not in self.exclude_fields:
            payload["timestamp"] = self._timestamp(record)
        payload.update(level=record.levelname, logger=record.name)
        if self.include_location:
            payload.update(module=record.module, function=record.funcName, line=record.lineno)

        if record.exc_info and "exception" not in self.exclude_fields:
            exc_type, exc_value, _ = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value is not None else None,
                "traceback": self.formatException(record.exc_info),
            }

        payload.update(_record_extras(record, self.exclude_fields))
        return json.dumps(payload, default=str, separators=(",", ":"))


class TextFormatter(logging.Formatter):
    """Single-line text layout for terminals.

    ``2026-01-07 10:30:45.123 [INFO] easysql.supervisor: Connection opened (connection_id=c1)``
    """

    LEVEL_COLORS = {
        "DEBUG": "36",
        "INFO": "32",
        "WARNING": "33",
        "ERROR": "31",
        "CRITICAL": "35",
    }

    def __init__(
        self,
        *,
        include_extras: bool = True,
        colors: bool = False,
        max_line_length: Optional[int] = None,
    ) -> None:
        super().__init__()
        self.include_extras = include_extras
        self.colors = colors
        self.max_line_length = max_line_length

    def _level(self, levelname: str) -> str:
        code = self.LEVEL_COLORS.get(levelname) if self.colors else None
        return f"\033[{code}m[{levelname}]\033[0m" if code else f"[{levelname}]"

    def format(self, record: logging.LogRecord) -> str:
        when = _local_time(record).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        line = f"{when} {self._level(record.levelname)} {record.name}: {record.getMessage()}"

        extras = _record_extras(record) if self.include_extras else {}
        if extras:
            rendered = (f"{k}={v}" if isinstance(v, str) else f"{k}={v!r}" for k, v in extras.items())
            line += " (" + ", ".join(rendered) + ")"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        limit = self.max_line_length
        if limit and len(line) > limit:
            line = line[: limit - 3] + "..."
        return line


FORMATTERS = {"json": JSONFormatter, "text": TextFormatter}


def get_formatter(format_type: str, **kwargs: Any) -> logging.Formatter:
    """Instantiate the formatter registered under ``format_type``.

    Raises:
        ValueError: If no formatter has that name
    """
    try:
        formatter_class = FORMATTERS[format_type.lower()]
    except KeyError:
        raise ValueError(f"Unsupported formatter type: {format_type}") from None
    return formatter_class(**kwargs)
