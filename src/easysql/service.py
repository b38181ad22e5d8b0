"""Request/response facade over the connection layer.

``DatabaseService`` is the only surface the presentation layer talks to. Every
operation returns a result value: ``QueryResult`` for free-form statements and
``OperationResult`` for everything else. Exceptions never cross this boundary.

Example:
    >>> service = DatabaseService()
    >>> await service.connect({"id": "c1", "type": "sqlite", "filePath": "app.db"})
    >>> result = await service.list_tables("c1", "main")
    >>> result.data
    [TableInfo(name='users', rows=3, is_view=False)]
"""

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .config.models import ConnectionProfile, CoreSettings
from .core.exceptions import EasySQLException, ValidationError
from .core.utils import measure_time
from .credentials import LegacyPasswordDecryptor
from .database.base import BaseAdapter
from .database.connections import ConnectionRegistry, InMemoryConnectionRegistry, close_quietly
from .database.factory import AdapterFactory
from .database.models import (
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    OperationResult,
    PrimaryKey,
    QueryResult,
    TableOptions,
)
from .database.registry import AdapterRegistry
from .database.supervisor import ConnectionState, ConnectionSupervisor
from .logging import get_logger
from .tunnel.ssh import SSHTunnelManager

ProfileInput = Union[ConnectionProfile, Mapping[str, Any]]


def _profile(profile: ProfileInput) -> ConnectionProfile:
    if isinstance(profile, ConnectionProfile):
        return profile
    return ConnectionProfile.from_dict(dict(profile))


def split_statements(sql: str) -> List[str]:
    """Split a script on ``;`` and drop blank and ``--`` comment statements."""
    statements = (part.strip() for part in sql.split(";"))
    return [s for s in statements if s and not s.startswith("--")]


def _primary_key(value: Union[PrimaryKey, Mapping[str, Any]]) -> PrimaryKey:
    if isinstance(value, PrimaryKey):
        return value
    if "column" not in value:
        raise ValidationError("Primary key needs a column", context={"primary_key": dict(value)})
    return PrimaryKey(column=value["column"], value=value.get("value"))


def _columns(columns: Sequence[Union[ColumnDefinition, Mapping[str, Any]]]) -> List[ColumnDefinition]:
    return [c if isinstance(c, ColumnDefinition) else ColumnDefinition.from_dict(dict(c)) for c in columns]


def _indexes(indexes: Sequence[Union[IndexDefinition, Mapping[str, Any]]]) -> List[IndexDefinition]:
    return [i if isinstance(i, IndexDefinition) else IndexDefinition(**i) for i in indexes]


def _foreign_keys(
    foreign_keys: Sequence[Union[ForeignKeyDefinition, Mapping[str, Any]]]
) -> List[ForeignKeyDefinition]:
    return [f if isinstance(f, ForeignKeyDefinition) else ForeignKeyDefinition(**f) for f in foreign_keys]


class DatabaseService:
    """Engine-agnostic operation set keyed by connection id.

    Collaborators are injectable; by default the service builds an in-memory
    registry, a tunnel manager from ``settings.tunnel`` and the built-in
    adapter registry.
    """

    def __init__(
        self,
        settings: Optional[CoreSettings] = None,
        *,
        registry: Optional[ConnectionRegistry] = None,
        tunnels: Optional[SSHTunnelManager] = None,
        adapters: Optional[AdapterRegistry] = None,
        decryptor: Optional[LegacyPasswordDecryptor] = None,
    ) -> None:
        self.settings = settings or CoreSettings()
        self.registry = registry if registry is not None else InMemoryConnectionRegistry()
        self.tunnels = tunnels or SSHTunnelManager(self.settings.tunnel)
        self.factory = AdapterFactory(adapters, settings=self.settings)
        self.supervisor = ConnectionSupervisor(self.registry, self.factory, self.tunnels)
        self.decryptor = decryptor or LegacyPasswordDecryptor()
        self.logger = get_logger("easysql.service")

    # Connections

    async def test_connection(self, profile: ProfileInput) -> OperationResult:
        """Connect and disconnect without registering anything."""
        adapter: Optional[BaseAdapter] = None
        tunnel = None
        try:
            resolved = _profile(profile)
            adapter, tunnel = await self.supervisor.open_connection(resolved)
            info = adapter.get_connection_info()
        except Exception as e:
            self.logger.warning("Connection test failed", error=str(e), error_type=type(e).__name__)
            return OperationResult.failure(e)
        finally:
            if adapter is not None:
                await close_quietly(adapter, tunnel)
                if tunnel is not None:
                    self.registry.untrack_tunnel(tunnel)
        return OperationResult.ok("Connection successful", data=info)

    async def connect(self, profile: ProfileInput) -> OperationResult:
        try:
            resolved = _profile(profile)
            entry = await self.supervisor.connect(resolved)
        except Exception as e:
            self.logger.warning("Connect failed", error=str(e), error_type=type(e).__name__)
            return OperationResult.failure(e)
        self.logger.info("Connected", connection_id=entry.id, engine=entry.engine, tunneled=entry.tunnel is not None)
        return OperationResult.ok("Connected", data=entry.adapter.get_connection_info())

    async def disconnect(self, connection_id: str) -> OperationResult:
        try:
            await self.supervisor.disconnect(connection_id)
        except Exception as e:
            self.logger.warning("Disconnect failed", connection_id=connection_id, error=str(e))
            return OperationResult.failure(e)
        return OperationResult.ok("Disconnected")

    async def shutdown(self) -> None:
        """Close every connection and tunnel."""
        try:
            await self.supervisor.shutdown()
        except Exception as e:
            self.logger.error("Shutdown failed", error=str(e), error_type=type(e).__name__)

    def connection_ids(self) -> List[str]:
        return self.registry.ids()

    def connection_state(self, connection_id: str) -> ConnectionState:
        return self.supervisor.state(connection_id)

    # Statements

    async def query(self, connection_id: str, statement: str) -> QueryResult:
        """Run a free-form statement; failures are reported inside the result."""
        with measure_time() as timer:
            try:
                return await self.supervisor.run(connection_id, lambda adapter: adapter.query(statement))
            except Exception as e:
                self.logger.info(
                    "Query failed",
                    connection_id=connection_id,
                    error=e.message if isinstance(e, EasySQLException) else str(e),
                    error_type=type(e).__name__,
                )
                return QueryResult.from_exception(e, execution_time=timer.duration)

    async def execute_script(self, connection_id: str, sql: str) -> OperationResult:
        """Run ``;``-separated statements in order, stopping at the first failure.

        Blank statements and statements starting with ``--`` are skipped.
        ``data`` is the number of statements executed.
        """
        statements = split_statements(sql)
        for index, statement in enumerate(statements):
            try:
                await self.supervisor.run(connection_id, lambda adapter, s=statement: adapter.query(s))
            except Exception as e:
                self.logger.warning(
                    "Script failed",
                    connection_id=connection_id,
                    statement_index=index,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return OperationResult.failure(e)
        self.logger.info("Script executed", connection_id=connection_id, statements=len(statements))
        return OperationResult.ok(f"{len(statements)} statement(s) executed", data=len(statements))

    async def _call(
        self,
        operation: str,
        connection_id: str,
        call: Callable[[BaseAdapter], Awaitable[Any]],
        message: str = "",
    ) -> OperationResult:
        try:
            data = await self.supervisor.run(connection_id, call)
        except Exception as e:
            self.logger.warning(
                "Operation failed",
                operation=operation,
                connection_id=connection_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return OperationResult.failure(e)
        return OperationResult.ok(message, data=data)

    # Introspection

    async def list_databases(self, connection_id: str) -> OperationResult:
        return await self._call("list_databases", connection_id, lambda a: a.list_databases())

    async def list_tables(self, connection_id: str, database: str) -> OperationResult:
        return await self._call("list_tables", connection_id, lambda a: a.list_tables(database))

    async def list_columns(self, connection_id: str, database: str, table: str) -> OperationResult:
        return await self._call("list_columns", connection_id, lambda a: a.list_columns(database, table))

    async def list_columns_detailed(self, connection_id: str, database: str, table: str) -> OperationResult:
        return await self._call(
            "list_columns_detailed", connection_id, lambda a: a.list_columns_detailed(database, table)
        )

    async def list_indexes(self, connection_id: str, database: str, table: str) -> OperationResult:
        return await self._call("list_indexes", connection_id, lambda a: a.list_indexes(database, table))

    async def list_foreign_keys(self, connection_id: str, database: str, table: str) -> OperationResult:
        return await self._call("list_foreign_keys", connection_id, lambda a: a.list_foreign_keys(database, table))

    async def get_table_options(self, connection_id: str, database: str, table: str) -> OperationResult:
        return await self._call("get_table_options", connection_id, lambda a: a.get_table_options(database, table))

    async def get_table_info(self, connection_id: str, database: str, table: str) -> OperationResult:
        return await self._call("get_table_info", connection_id, lambda a: a.get_table_info(database, table))

    async def get_table_data(
        self,
        connection_id: str,
        database: str,
        table: str,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> OperationResult:
        size = page_size if page_size is not None else self.settings.default_page_size
        if size > self.settings.max_page_size:
            return OperationResult.failure(ValidationError(
                f"Page size {size} exceeds the maximum of {self.settings.max_page_size}",
                context={"page_size": size},
            ))
        return await self._call(
            "get_table_data", connection_id, lambda a: a.get_table_data(database, table, page, size)
        )

    # Rows

    async def insert_row(
        self, connection_id: str, database: str, table: str, values: Dict[str, Any]
    ) -> OperationResult:
        return await self._call(
            "insert_row", connection_id, lambda a: a.insert_row(database, table, values), "Row inserted"
        )

    async def update_row(
        self,
        connection_id: str,
        database: str,
        table: str,
        primary_key: Union[PrimaryKey, Mapping[str, Any]],
        updates: Dict[str, Any],
    ) -> OperationResult:
        try:
            key = _primary_key(primary_key)
        except ValidationError as e:
            return OperationResult.failure(e)
        return await self._call(
            "update_row", connection_id, lambda a: a.update_row(database, table, key, updates), "Row updated"
        )

    async def delete_row(
        self,
        connection_id: str,
        database: str,
        table: str,
        primary_key: Union[PrimaryKey, Mapping[str, Any]],
    ) -> OperationResult:
        try:
            key = _primary_key(primary_key)
        except ValidationError as e:
            return OperationResult.failure(e)
        return await self._call(
            "delete_row", connection_id, lambda a: a.delete_row(database, table, key), "Row deleted"
        )

    # DDL

    async def create_database(
        self, connection_id: str, name: str, charset: Optional[str] = None, collation: Optional[str] = None
    ) -> OperationResult:
        return await self._call(
            "create_database",
            connection_id,
            lambda a: a.create_database(name, charset, collation),
            f"Database {name} created",
        )

    async def drop_database(self, connection_id: str, name: str) -> OperationResult:
        return await self._call(
            "drop_database", connection_id, lambda a: a.drop_database(name), f"Database {name} dropped"
        )

    async def create_table(
        self,
        connection_id: str,
        database: str,
        table: str,
        columns: Sequence[Union[ColumnDefinition, Mapping[str, Any]]],
        indexes: Sequence[Union[IndexDefinition, Mapping[str, Any]]] = (),
        foreign_keys: Sequence[Union[ForeignKeyDefinition, Mapping[str, Any]]] = (),
        options: Optional[TableOptions] = None,
    ) -> OperationResult:
        try:
            column_defs = _columns(columns)
            index_defs = _indexes(indexes)
            fk_defs = _foreign_keys(foreign_keys)
        except (EasySQLException, TypeError) as e:
            return OperationResult.failure(e)
        return await self._call(
            "create_table",
            connection_id,
            lambda a: a.create_table(database, table, column_defs, index_defs, fk_defs, options),
            f"Table {table} created",
        )

    async def drop_table(self, connection_id: str, database: str, table: str) -> OperationResult:
        return await self._call(
            "drop_table", connection_id, lambda a: a.drop_table(database, table), f"Table {table} dropped"
        )

    async def truncate_table(self, connection_id: str, database: str, table: str) -> OperationResult:
        return await self._call(
            "truncate_table", connection_id, lambda a: a.truncate_table(database, table), f"Table {table} truncated"
        )

    async def rename_table(self, connection_id: str, database: str, table: str, new_name: str) -> OperationResult:
        return await self._call(
            "rename_table",
            connection_id,
            lambda a: a.rename_table(database, table, new_name),
            f"Table {table} renamed to {new_name}",
        )

    async def duplicate_table(
        self, connection_id: str, database: str, source: str, target: str, with_data: bool = False
    ) -> OperationResult:
        return await self._call(
            "duplicate_table",
            connection_id,
            lambda a: a.duplicate_table(database, source, target, with_data),
            f"Table {source} duplicated to {target}",
        )

    async def add_column(
        self,
        connection_id: str,
        database: str,
        table: str,
        column: Union[ColumnDefinition, Mapping[str, Any]],
        after: Optional[str] = None,
    ) -> OperationResult:
        if isinstance(column, Mapping) and "after" in column:
            column = dict(column)
            position = column.pop("after")
            after = after if after is not None else position
        try:
            definition = _columns([column])[0]
        except (EasySQLException, TypeError) as e:
            return OperationResult.failure(e)
        return await self._call(
            "add_column",
            connection_id,
            lambda a: a.add_column(database, table, definition, after),
            f"Column {definition.name} added",
        )

    async def modify_column(
        self,
        connection_id: str,
        database: str,
        table: str,
        old_name: str,
        column: Union[ColumnDefinition, Mapping[str, Any]],
    ) -> OperationResult:
        try:
            definition = _columns([column])[0]
        except (EasySQLException, TypeError) as e:
            return OperationResult.failure(e)
        return await self._call(
            "modify_column",
            connection_id,
            lambda a: a.modify_column(database, table, old_name, definition),
            f"Column {old_name} modified",
        )

    async def drop_column(self, connection_id: str, database: str, table: str, column: str) -> OperationResult:
        return await self._call(
            "drop_column",
            connection_id,
            lambda a: a.drop_column(database, table, column),
            f"Column {column} dropped",
        )

    # Credentials

    def decrypt_legacy_password(self, ciphertext_hex: str) -> str:
        """Recover a password from a legacy export; empty string on failure."""
        return self.decryptor.decrypt(ciphertext_hex)
