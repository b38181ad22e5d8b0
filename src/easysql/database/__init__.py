"""EasySQL database layer.

Adapters, dialects, the connection registry and the reconnect supervisor.
Engine adapters are resolved through ``AdapterRegistry`` so that a driver is
only imported when a profile for its engine is connected.
"""

from .base import BaseAdapter, SQLAdapter
from .connections import ConnectionEntry, ConnectionRegistry, InMemoryConnectionRegistry
from .dialects import MYSQL, POSTGRES, SQLITE, SQLSERVER, Dialect
from .factory import AdapterFactory
from .models import (
    ColumnDefinition,
    ColumnDetail,
    ColumnInfo,
    ForeignKeyDefinition,
    ForeignKeyInfo,
    IndexDefinition,
    IndexInfo,
    OperationResult,
    PrimaryKey,
    QueryResult,
    TableData,
    TableDetails,
    TableInfo,
    TableOptions,
)
from .registry import BUILTIN_ADAPTERS, AdapterRegistry, default_registry
from .supervisor import ConnectionState, ConnectionSupervisor

__all__ = [
    # Adapters
    "BaseAdapter",
    "SQLAdapter",
    "AdapterRegistry",
    "AdapterFactory",
    "BUILTIN_ADAPTERS",
    "default_registry",

    # Dialects
    "Dialect",
    "MYSQL",
    "POSTGRES",
    "SQLITE",
    "SQLSERVER",

    # Connections
    "ConnectionEntry",
    "ConnectionRegistry",
    "InMemoryConnectionRegistry",
    "ConnectionState",
    "ConnectionSupervisor",

    # Models
    "QueryResult",
    "TableInfo",
    "ColumnInfo",
    "ColumnDetail",
    "IndexInfo",
    "ForeignKeyInfo",
    "TableOptions",
    "TableDetails",
    "TableData",
    "ColumnDefinition",
    "IndexDefinition",
    "ForeignKeyDefinition",
    "PrimaryKey",
    "OperationResult",
]
