"""Adapter registry mapping engine kinds to adapter classes.

Adapters may be registered as classes or as ``"module:Class"`` paths. Paths
are imported on first use, so an engine whose driver is not installed only
fails when a profile for that engine is actually opened.
"""

import importlib
from typing import Dict, List, Optional, Type, Union

from ..core.exceptions import ConfigurationError, ErrorCodes
from ..logging import get_logger
from .base import BaseAdapter

AdapterSpec = Union[Type[BaseAdapter], str]

BUILTIN_ADAPTERS: Dict[str, str] = {
    "mysql": "easysql.database.connectors.mysql:MySQLAdapter",
    "mariadb": "easysql.database.connectors.mysql:MySQLAdapter",
    "postgres": "easysql.database.connectors.postgresql:PostgreSQLAdapter",
    "sqlite": "easysql.database.connectors.sqlite:SQLiteAdapter",
    "sqlserver": "easysql.database.connectors.mssql:SQLServerAdapter",
    "mongodb": "easysql.database.connectors.mongodb:MongoDBAdapter",
    "redis": "easysql.database.connectors.redis:RedisAdapter",
}


class AdapterRegistry:
    """Registry for adapter types.

    Example:
        >>> registry = AdapterRegistry()
        >>> registry.register("sqlite", SQLiteAdapter)
        >>> registry.get_adapter_class("sqlite")
        <class 'easysql.database.connectors.sqlite.SQLiteAdapter'>
    """

    def __init__(self, adapters: Optional[Dict[str, AdapterSpec]] = None) -> None:
        self.logger = get_logger("easysql.database.registry")
        self._adapters: Dict[str, AdapterSpec] = {}
        for engine, spec in (adapters or {}).items():
            self.register(engine, spec)

    def register(self, engine: str, adapter: AdapterSpec) -> None:
        """Register an adapter class (or its dotted path) for an engine.

        Raises:
            ConfigurationError: If a class is given that does not extend BaseAdapter
        """
        if not isinstance(adapter, str) and not (
            isinstance(adapter, type) and issubclass(adapter, BaseAdapter)
        ):
            raise ConfigurationError(
                f"Adapter for {engine} must extend BaseAdapter",
                code=ErrorCodes.CONFIG_INVALID,
                context={"engine": engine, "adapter": repr(adapter)},
            )

        if engine in self._adapters:
            self.logger.warning("Overriding existing adapter registration", engine=engine)

        self._adapters[engine] = adapter
        self.logger.debug("Adapter registered", engine=engine, adapter=self._describe(adapter))

    def get_adapter_class(self, engine: str) -> Type[BaseAdapter]:
        """Return the adapter class for ``engine``, importing it if needed.

        Raises:
            ConfigurationError: If the engine is unknown or its adapter cannot be imported
        """
        try:
            spec = self._adapters[engine]
        except KeyError:
            raise ConfigurationError(
                f"No adapter registered for engine: {engine}",
                code=ErrorCodes.UNSUPPORTED_ENGINE,
                context={"engine": engine, "available_engines": self.engines()},
            ) from None

        if isinstance(spec, str):
            spec = self._load(engine, spec)
            self._adapters[engine] = spec
        return spec

    def _load(self, engine: str, path: str) -> Type[BaseAdapter]:
        module_name, _, class_name = path.partition(":")
        try:
            module = importlib.import_module(module_name)
            adapter = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ConfigurationError(
                f"Adapter for {engine} is unavailable: {e}",
                code=ErrorCodes.UNSUPPORTED_ENGINE,
                context={"engine": engine, "adapter": path},
                cause=e,
            ) from e

        if not (isinstance(adapter, type) and issubclass(adapter, BaseAdapter)):
            raise ConfigurationError(
                f"{path} is not an adapter class",
                code=ErrorCodes.CONFIG_INVALID,
                context={"engine": engine, "adapter": path},
            )
        return adapter

    def is_supported(self, engine: str) -> bool:
        return engine in self._adapters

    def engines(self) -> List[str]:
        return sorted(self._adapters)

    @staticmethod
    def _describe(spec: AdapterSpec) -> str:
        return spec if isinstance(spec, str) else f"{spec.__module__}:{spec.__name__}"

    def __len__(self) -> int:
        return len(self._adapters)

    def __repr__(self) -> str:
        return f"AdapterRegistry(engines={self.engines()!r})"


def default_registry() -> AdapterRegistry:
    """Return a new registry holding every built-in adapter."""
    return AdapterRegistry(dict(BUILTIN_ADAPTERS))
