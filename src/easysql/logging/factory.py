"""Logger factory and process-wide logging setup.

One ``LoggerFactory`` owns the handlers attached to the ``easysql`` stdlib
logger and the structlog processor chain. The module keeps a global factory
that the rest of the package reaches through ``get_logger`` and
``get_performance_logger``.

Example:
    >>> from easysql.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", format="text")
    >>> get_logger("easysql.tunnel").info("Tunnel opened", local_port=40012)
"""

import logging
import logging.handlers
import sys
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..config.models import LoggingConfig
from ..core.exceptions import ValidationError
from .formatters import get_formatter
from .performance import PerformanceLogger
from .structured import StructuredLogger, redact_secrets

PACKAGE_LOGGER = "easysql"


@dataclass
class LoggerConfig:
    """Mutable runtime copy of ``LoggingConfig``."""

    level: str = "INFO"
    format: str = "json"
    console_output: bool = True
    file_path: Optional[str] = None
    max_file_size: int = 10485760
    backup_count: int = 5
    correlation_ids: bool = True
    slow_operation_ms: Optional[float] = 1000.0


def _level_number(name: str) -> int:
    level = getattr(logging, str(name).upper(), None)
    if not isinstance(level, int):
        raise ValidationError(f"Invalid log level: {name}", context={"level": name})
    return level


def _redact_processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    return redact_secrets(event_dict)


def _processor_chain(output_format: str) -> List[Any]:
    renderer = (
        structlog.processors.JSONRenderer()
        if output_format.lower() == "json"
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _redact_processor,
        renderer,
    ]


class LoggerFactory:
    """Creates cached structured and performance loggers.

    Handlers are (re)built whenever the configuration changes; cached
    loggers survive a reconfiguration.
    """

    def __init__(self, config: Optional[LoggerConfig] = None) -> None:
        self.config = config or LoggerConfig()
        self.initialized = False
        self._loggers: Dict[str, StructuredLogger] = {}
        self._performance_loggers: Dict[str, PerformanceLogger] = {}
        self._handlers: List[logging.Handler] = []

    def configure_from_config(self, logging_config: LoggingConfig) -> None:
        file_path = logging_config.file_path
        self.config = LoggerConfig(
            level=logging_config.level,
            format=logging_config.format,
            console_output=logging_config.console_output,
            file_path=str(file_path) if file_path else None,
            max_file_size=logging_config.max_file_size,
            backup_count=logging_config.backup_count,
            slow_operation_ms=logging_config.slow_operation_ms,
        )
        self._apply()

    def configure_from_dict(self, config_dict: Dict[str, Any]) -> None:
        """Update matching ``LoggerConfig`` fields; other keys are ignored."""
        known = {f.name for f in fields(LoggerConfig)}
        for key in known.intersection(config_dict):
            setattr(self.config, key, config_dict[key])
        self._apply()

    def _apply(self) -> None:
        self.initialized = False
        self._ensure_configured()

    def _ensure_configured(self) -> None:
        if self.initialized:
            return
        level = _level_number(self.config.level)
        self._install_handlers(level)
        structlog.configure(
            processors=_processor_chain(self.config.format),
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            context_class=dict,
            cache_logger_on_first_use=True,
        )
        for perf in self._performance_loggers.values():
            perf.slow_threshold_ms = self.config.slow_operation_ms
        self.initialized = True

    def _build_handlers(self) -> List[logging.Handler]:
        handlers: List[logging.Handler] = []
        if self.config.console_output:
            handlers.append(logging.StreamHandler(sys.stderr))
        if self.config.file_path:
            path = Path(self.config.file_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                logging.handlers.RotatingFileHandler(
                    filename=str(path),
                    maxBytes=self.config.max_file_size,
                    backupCount=self.config.backup_count,
                    encoding="utf-8",
                )
            )
        return handlers

    def _install_handlers(self, level: int) -> None:
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        self._remove_handlers(package_logger)

        formatter = get_formatter(self.config.format)
        for handler in self._build_handlers():
            handler.setLevel(level)
            handler.setFormatter(formatter)
            package_logger.addHandler(handler)
            self._handlers.append(handler)
        package_logger.setLevel(level)
        package_logger.propagate = False

    def _remove_handlers(self, package_logger: logging.Logger) -> None:
        while self._handlers:
            handler = self._handlers.pop()
            package_logger.removeHandler(handler)
            handler.close()

    def get_logger(self, name: str, *, level: Optional[str] = None) -> StructuredLogger:
        self._ensure_configured()
        key = f"{name}_{level}"
        logger = self._loggers.get(key)
        if logger is None:
            logger = self._loggers[key] = StructuredLogger(
                name=name,
                level=level or self.config.level,
                enable_correlation=self.config.correlation_ids,
            )
        return logger

    def get_performance_logger(
        self,
        name: str,
        *,
        auto_log: bool = True,
        track_metrics: bool = True,
    ) -> PerformanceLogger:
        """Cached per name and flags; the slow threshold follows the config."""
        key = f"{name}_{auto_log}_{track_metrics}"
        perf = self._performance_loggers.get(key)
        if perf is None:
            perf = self._performance_loggers[key] = PerformanceLogger(
                name,
                auto_log=auto_log,
                track_metrics=track_metrics,
                slow_threshold_ms=self.config.slow_operation_ms,
                logger=self.get_logger(f"perf.{name}"),
            )
        return perf

    def set_level(self, level: str) -> None:
        number = _level_number(level)
        self.config.level = level.upper()
        for logger in self._loggers.values():
            logger.set_level(level)
        logging.getLogger(PACKAGE_LOGGER).setLevel(number)

    def get_logger_info(self) -> Dict[str, Any]:
        return {
            "config": {
                "level": self.config.level,
                "format": self.config.format,
                "console_output": self.config.console_output,
                "file_path": self.config.file_path,
                "slow_operation_ms": self.config.slow_operation_ms,
            },
            "initialized": self.initialized,
            "loggers": {
                "structured": list(self._loggers),
                "performance": list(self._performance_loggers),
            },
            "handlers": [type(handler).__name__ for handler in self._handlers],
        }

    def shutdown(self) -> None:
        """Detach and close handlers, then forget every cached logger."""
        self._remove_handlers(logging.getLogger(PACKAGE_LOGGER))
        self._loggers.clear()
        self._performance_loggers.clear()
        self.initialized = False

    def __repr__(self) -> str:
        return f"LoggerFactory({self.config.level}/{self.config.format}, loggers={len(self._loggers)})"


_global_factory = LoggerFactory()


def configure_logging(
    *,
    level: str = "INFO",
    format: str = "json",
    console_output: bool = True,
    file_path: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """Configure the global factory.

    Extra keyword arguments matching ``LoggerConfig`` fields, such as
    ``slow_operation_ms``, are applied too.
    """
    options = dict(kwargs, level=level, format=format, console_output=console_output, file_path=file_path)
    _global_factory.configure_from_dict(options)


def get_logger(name: str, *, level: Optional[str] = None) -> StructuredLogger:
    return _global_factory.get_logger(name, level=level)


def get_performance_logger(
    name: str,
    *,
    auto_log: bool = True,
    track_metrics: bool = True,
) -> PerformanceLogger:
    """Performance logger from the global factory.

    Example:
        >>> perf = get_performance_logger("easysql.adapter.mysql")
        >>> with perf.measure("list_databases"):
        ...     names = await adapter.list_databases()
    """
    return _global_factory.get_performance_logger(name, auto_log=auto_log, track_metrics=track_metrics)


def get_factory() -> LoggerFactory:
    return _global_factory


def shutdown_logging() -> None:
    _global_factory.shutdown()
