"""EasySQL - connection and adapter layer for a multi-engine database client.

EasySQL creates, supervises and normalizes connections to MySQL/MariaDB,
PostgreSQL, SQLite, SQL Server, MongoDB and Redis, optionally through SSH
tunnels, and exposes one engine-agnostic operation set.

Modules:
    core: Base components, exceptions and utilities
    config: Connection profiles and settings
    logging: Structured logging framework
    database: Adapters, dialects, registry and supervisor
    tunnel: SSH tunnel manager
    credentials: Legacy password decryption
    service: Request/response facade

Example:
    >>> from easysql import DatabaseService
    >>> from easysql.logging import configure_logging
    >>>
    >>> configure_logging(level="INFO", format="text")
    >>> service = DatabaseService()
    >>> await service.connect({"id": "local", "type": "sqlite", "filePath": "app.db"})
    >>> await service.query("local", "SELECT 1")
"""

from . import config, core, logging
from .service import DatabaseService

__version__ = "0.1.0"
__title__ = "EasySQL"
__description__ = "Connection and adapter layer for a multi-engine database client"
__license__ = "MIT"

__all__ = [
    "core",
    "config",
    "logging",
    "DatabaseService",
    "__version__",
    "__title__",
    "__description__",
    "__license__",
]
