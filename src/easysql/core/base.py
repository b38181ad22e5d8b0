"""Lifecycle base classes.

Every adapter is an ``AsyncComponent[ConnectionProfile]``: constructing it is
cheap and side-effect free, ``initialize`` opens the driver resources and
``cleanup`` releases them. Both are guarded by one lock, so a handle is never
opened and closed at the same time.

Classes:
    BaseComponent: Holds the configuration and readiness bookkeeping
    AsyncComponent: Adds async initialize/cleanup around subclass hooks

Example:
    >>> class SQLiteAdapter(AsyncComponent[ConnectionProfile]):
    ...     async def _async_initialize(self) -> None:
    ...         self._connection = await aiosqlite.connect(self.config.sqlite_path)
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, ClassVar, Dict, Generic, Optional, TypeVar

import structlog

from .exceptions import EasySQLException, ValidationError

T = TypeVar("T")  # Configuration type


class BaseComponent(Generic[T], ABC):
    """Configuration holder with readiness bookkeeping.

    Attributes:
        component_name: Name used in logs and health reports
        version: Component version reported by ``get_health_status``
        last_error: Message of the most recent failed initialization
    """

    component_name: ClassVar[str] = "BaseComponent"
    version: ClassVar[str] = "1.0.0"

    def __init__(self, config: T) -> None:
        if config is None:
            raise ValidationError(
                f"{self.component_name} needs a configuration",
                code="CONFIG_NULL",
                context={"component": self.component_name},
            )

        self._config: T = config
        self._initialized = False
        self._ready_since: Optional[float] = None
        self.last_error: Optional[str] = None
        self._logger = structlog.get_logger("easysql.component").bind(component=self.component_name)

    @property
    def config(self) -> T:
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def uptime(self) -> float:
        """Seconds since the component became ready; 0.0 while not ready."""
        if self._ready_since is None:
            return 0.0
        return time.monotonic() - self._ready_since

    def _mark_ready(self, ready: bool) -> None:
        self._initialized = ready
        self._ready_since = time.monotonic() if ready else None

    def get_health_status(self) -> Dict[str, Any]:
        return {
            "component": self.component_name,
            "version": self.version,
            "initialized": self._initialized,
            "uptime_seconds": round(self.uptime, 3),
            "status": "healthy" if self._initialized else "not_initialized",
            "last_error": self.last_error,
        }

    def __repr__(self) -> str:
        state = "ready" if self._initialized else "idle"
        return f"{self.__class__.__name__}({self.component_name!r}, {state}, initialized={self._initialized})"


class AsyncComponent(BaseComponent[T]):
    """Component with async open/close hooks.

    ``initialize`` runs ``_async_initialize`` at most once until the next
    ``cleanup``. Errors from the EasySQL hierarchy propagate unchanged; any
    other error is wrapped with code ``INIT_FAILED``. ``cleanup`` never
    raises.
    """

    def __init__(self, config: T) -> None:
        super().__init__(config)
        self._lifecycle_lock = asyncio.Lock()

    async def initialize(self) -> None:
        async with self._lifecycle_lock:
            if self._initialized:
                return

            try:
                await self._async_initialize()
            except Exception as e:
                self.last_error = e.message if isinstance(e, EasySQLException) else str(e)
                self._logger.error("Open failed", error=self.last_error, error_type=type(e).__name__)
                if isinstance(e, EasySQLException):
                    raise
                raise EasySQLException(
                    f"Failed to initialize {self.component_name}: {e}",
                    code="INIT_FAILED",
                    context={"component": self.component_name},
                    cause=e,
                ) from e

            self.last_error = None
            self._mark_ready(True)
            self._logger.debug("Opened")

    async def cleanup(self) -> None:
        async with self._lifecycle_lock:
            if not self._initialized:
                return
            try:
                await self._async_cleanup()
            except Exception as e:
                self._logger.warning("Close failed", error=str(e), error_type=type(e).__name__)
            finally:
                self._mark_ready(False)

    @abstractmethod
    async def _async_initialize(self) -> None:
        """Open driver resources."""

    async def _async_cleanup(self) -> None:
        """Release driver resources."""

    @asynccontextmanager
    async def managed_lifecycle(self) -> AsyncGenerator["AsyncComponent[T]", None]:
        """Open on entry, close on exit.

        Example:
            >>> async with adapter.managed_lifecycle() as conn:
            ...     await conn.list_databases()
        """
        await self.initialize()
        try:
            yield self
        finally:
            await self.cleanup()

    async def __aenter__(self) -> "AsyncComponent[T]":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.cleanup()
