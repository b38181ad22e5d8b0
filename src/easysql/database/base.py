"""Adapter interface and the shared relational adapter.

Classes:
    BaseAdapter: Engine-agnostic operation set; one instance per live connection
    SQLAdapter: Relational base writing pagination, CRUD and DDL once per dialect
"""

from abc import abstractmethod
from contextlib import contextmanager
from typing import Any, ClassVar, Dict, Generator, List, Optional, Sequence, Tuple

from ..config.models import ConnectionProfile, CoreSettings
from ..core import AsyncComponent
from ..core.exceptions import (
    ConnectionLost,
    EasySQLException,
    ErrorCodes,
    StatementError,
    UnsupportedOperation,
    ValidationError,
)
from ..core.utils import StringUtils, measure_time
from ..logging import get_logger, get_performance_logger
from .dialects import Dialect
from .models import (
    ColumnDefinition,
    ColumnDetail,
    ColumnInfo,
    ForeignKeyDefinition,
    ForeignKeyInfo,
    IndexDefinition,
    IndexInfo,
    PrimaryKey,
    QueryResult,
    TableData,
    TableDetails,
    TableInfo,
    TableOptions,
)

TRANSPORT_ERRORS: Tuple[type, ...] = (
    ConnectionResetError,
    BrokenPipeError,
    ConnectionAbortedError,
    TimeoutError,
    OSError,
)


class BaseAdapter(AsyncComponent[ConnectionProfile]):
    """Engine-agnostic operation set.

    The instance is the connection handle: ``connect`` opens the driver
    connection (or pool), ``disconnect`` releases it. Capabilities an engine
    lacks raise ``UnsupportedOperation``.

    Subclasses set ``engine`` and implement ``_async_initialize``,
    ``_async_cleanup``, ``is_alive`` and whatever operations they support.
    """

    engine: ClassVar[str] = "unknown"
    transport_errors: ClassVar[Tuple[type, ...]] = TRANSPORT_ERRORS

    def __init__(self, config: ConnectionProfile, settings: Optional[CoreSettings] = None) -> None:
        super().__init__(config)
        self.settings = settings or CoreSettings()
        self.logger = get_logger(f"easysql.adapter.{self.engine}").bind(connection_id=config.id)
        self.perf_logger = get_performance_logger(f"easysql.adapter.{self.engine}")

    @property
    def connection_id(self) -> str:
        return self.config.id

    async def connect(self) -> None:
        await self.initialize()

    async def disconnect(self) -> None:
        await self.cleanup()

    @abstractmethod
    async def is_alive(self) -> bool:
        """Run a trivial probe; any error means not alive."""

    def get_connection_info(self) -> Dict[str, Any]:
        return {
            "connection_id": self.config.id,
            "engine": self.engine,
            "host": self.config.resolved_host,
            "port": self.config.resolved_port,
            "database": self.config.database,
            "connected": self.is_initialized,
        }

    def _require_connected(self) -> None:
        if not self.is_initialized:
            raise ConnectionLost(
                f"{self.engine} connection {self.config.id} is not open",
                code=ErrorCodes.NOT_CONNECTED,
                context={"connection_id": self.config.id},
            )

    def is_transport_error(self, exc: BaseException) -> bool:
        return isinstance(exc, self.transport_errors)

    @contextmanager
    def _translate_errors(
        self,
        operation: str,
        *,
        code: str = ErrorCodes.QUERY_EXECUTION_FAILED,
        statement: Optional[str] = None,
    ) -> Generator[None, None, None]:
        """Wrap driver exceptions raised in the block.

        Transport failures become ``ConnectionLost`` (which the supervisor
        retries once); everything else becomes ``StatementError``.
        """
        try:
            yield
        except EasySQLException:
            raise
        except Exception as e:
            context: Dict[str, Any] = {"operation": operation, "engine": self.engine}
            if statement:
                context["statement"] = StringUtils.compact_statement(statement)
            if self.is_transport_error(e):
                self.logger.warning("Transport failure", error=str(e), **context)
                raise ConnectionLost(
                    f"Connection lost during {operation}: {e}",
                    code=ErrorCodes.CONNECTION_LOST,
                    context=context,
                    cause=e,
                ) from e
            raise StatementError(str(e) or type(e).__name__, code=code, context=context, cause=e) from e

    def _unsupported(self, operation: str) -> UnsupportedOperation:
        return UnsupportedOperation(
            f"{operation} is not supported for {self.engine}",
            code=ErrorCodes.OPERATION_NOT_SUPPORTED,
            context={"engine": self.engine, "operation": operation},
        )

    @staticmethod
    def _validate_page(page: int, page_size: int) -> None:
        if page < 1:
            raise ValidationError(f"Page must be >= 1, got {page}", context={"page": page})
        if page_size < 1:
            raise ValidationError(
                f"Page size must be >= 1, got {page_size}", context={"page_size": page_size}
            )

    # Query and introspection

    async def query(self, statement: str) -> QueryResult:
        raise self._unsupported("query")

    async def list_databases(self) -> List[str]:
        raise self._unsupported("list_databases")

    async def list_tables(self, database: str) -> List[TableInfo]:
        raise self._unsupported("list_tables")

    async def list_columns(self, database: str, table: str) -> List[ColumnInfo]:
        return [column.summary() for column in await self.list_columns_detailed(database, table)]

    async def list_columns_detailed(self, database: str, table: str) -> List[ColumnDetail]:
        raise self._unsupported("list_columns_detailed")

    async def list_indexes(self, database: str, table: str) -> List[IndexInfo]:
        raise self._unsupported("list_indexes")

    async def list_foreign_keys(self, database: str, table: str) -> List[ForeignKeyInfo]:
        raise self._unsupported("list_foreign_keys")

    async def get_table_options(self, database: str, table: str) -> TableOptions:
        raise self._unsupported("get_table_options")

    async def get_table_info(self, database: str, table: str) -> TableDetails:
        """Collect columns, indexes, foreign keys and options of one table."""
        with self.perf_logger.measure("get_table_info", database=database, table=table):
            return TableDetails(
                columns=await self.list_columns_detailed(database, table),
                indexes=await self.list_indexes(database, table),
                foreign_keys=await self.list_foreign_keys(database, table),
                options=await self.get_table_options(database, table),
            )

    async def get_table_data(self, database: str, table: str, page: int = 1, page_size: int = 100) -> TableData:
        raise self._unsupported("get_table_data")

    # Rows

    async def insert_row(self, database: str, table: str, values: Dict[str, Any]) -> int:
        raise self._unsupported("insert_row")

    async def update_row(
        self, database: str, table: str, primary_key: PrimaryKey, updates: Dict[str, Any]
    ) -> int:
        raise self._unsupported("update_row")

    async def delete_row(self, database: str, table: str, primary_key: PrimaryKey) -> int:
        raise self._unsupported("delete_row")

    # DDL

    async def create_database(self, name: str, charset: Optional[str] = None, collation: Optional[str] = None) -> None:
        raise self._unsupported("create_database")

    async def drop_database(self, name: str) -> None:
        raise self._unsupported("drop_database")

    async def create_table(
        self,
        database: str,
        table: str,
        columns: Sequence[ColumnDefinition],
        indexes: Sequence[IndexDefinition] = (),
        foreign_keys: Sequence[ForeignKeyDefinition] = (),
        options: Optional[TableOptions] = None,
    ) -> None:
        raise self._unsupported("create_table")

    async def drop_table(self, database: str, table: str) -> None:
        raise self._unsupported("drop_table")

    async def truncate_table(self, database: str, table: str) -> None:
        raise self._unsupported("truncate_table")

    async def rename_table(self, database: str, table: str, new_name: str) -> None:
        raise self._unsupported("rename_table")

    async def duplicate_table(self, database: str, source: str, target: str, with_data: bool = False) -> None:
        raise self._unsupported("duplicate_table")

    async def add_column(
        self, database: str, table: str, column: ColumnDefinition, after: Optional[str] = None
    ) -> None:
        raise self._unsupported("add_column")

    async def modify_column(self, database: str, table: str, old_name: str, column: ColumnDefinition) -> None:
        raise self._unsupported("modify_column")

    async def drop_column(self, database: str, table: str, column: str) -> None:
        raise self._unsupported("drop_column")


class SQLAdapter(BaseAdapter):
    """Shared relational adapter.

    Subclasses provide the dialect, the table reference rule and three
    driver primitives: ``_fetch``, ``_execute`` and ``_run_query``.
    """

    dialect: ClassVar[Dialect]

    @abstractmethod
    async def _fetch(
        self, sql: str, params: Sequence[Any] = (), *, database: Optional[str] = None
    ) -> Tuple[List[str], List[List[Any]]]:
        """Run a row-returning statement and return (columns, rows)."""

    @abstractmethod
    async def _execute(self, sql: str, params: Sequence[Any] = (), *, database: Optional[str] = None) -> int:
        """Run a statement and return the affected row count."""

    @abstractmethod
    async def _run_query(self, statement: str) -> Tuple[List[str], List[List[Any]], Optional[int]]:
        """Run a free-form statement and return (columns, rows, affected_rows)."""

    @abstractmethod
    def table_ref(self, database: str, table: str) -> str:
        """Return the quoted reference to ``table`` in ``database``."""

    async def _execute_many(self, statements: Sequence[str], *, database: Optional[str] = None) -> None:
        for statement in statements:
            await self._execute(statement, database=database)

    async def _fetch_scalar(self, sql: str, params: Sequence[Any] = (), *, database: Optional[str] = None) -> Any:
        _, rows = await self._fetch(sql, params, database=database)
        return rows[0][0] if rows and rows[0] else None

    async def _ddl(self, operation: str, statements: Sequence[str], *, database: Optional[str] = None) -> None:
        self._require_connected()
        with self._translate_errors(operation, code=ErrorCodes.DDL_FAILED, statement="; ".join(statements)):
            with self.perf_logger.measure(operation, database=database):
                await self._execute_many(statements, database=database)
        self.logger.info("DDL executed", operation=operation, database=database, statements=len(statements))

    async def is_alive(self) -> bool:
        if not self.is_initialized:
            return False
        try:
            await self._fetch("SELECT 1")
        except Exception as e:
            self.logger.debug("Liveness probe failed", error=str(e))
            return False
        return True

    async def query(self, statement: str) -> QueryResult:
        self._require_connected()
        with measure_time() as timer, self._translate_errors("query", statement=statement):
            with self.perf_logger.measure("query"):
                columns, rows, affected = await self._run_query(statement)
        return QueryResult(
            columns=columns,
            rows=rows,
            affected_rows=affected,
            execution_time=timer.duration,
        )

    async def get_table_data(self, database: str, table: str, page: int = 1, page_size: int = 100) -> TableData:
        """Fetch one page of rows; the total is counted first."""
        self._validate_page(page, page_size)
        self._require_connected()

        ref = self.table_ref(database, table)
        known_columns = await self.list_columns(database, table)
        with self._translate_errors("get_table_data"):
            with self.perf_logger.measure("get_table_data", database=database, table=table):
                total = int(await self._fetch_scalar(self.dialect.count(ref), database=database) or 0)
                offset = (page - 1) * page_size
                names, rows = await self._fetch(
                    self.dialect.select_page(ref, page_size, offset), database=database
                )

        by_name = {c.name: c for c in known_columns}
        columns = [by_name.get(name) or ColumnInfo(name=name, type="") for name in names] if names else known_columns
        return TableData(columns=columns, rows=rows, total=total, page=page, page_size=page_size)

    async def insert_row(self, database: str, table: str, values: Dict[str, Any]) -> int:
        self._require_connected()
        params: List[Any] = []
        sql = self.dialect.insert(self.table_ref(database, table), values, params)
        with self._translate_errors("insert_row", statement=sql):
            return await self._execute(sql, params, database=database)

    async def update_row(
        self, database: str, table: str, primary_key: PrimaryKey, updates: Dict[str, Any]
    ) -> int:
        self._require_connected()
        params: List[Any] = []
        sql = self.dialect.update(
            self.table_ref(database, table), updates, primary_key.column, primary_key.value, params
        )
        with self._translate_errors("update_row", statement=sql):
            return await self._execute(sql, params, database=database)

    async def delete_row(self, database: str, table: str, primary_key: PrimaryKey) -> int:
        self._require_connected()
        params: List[Any] = []
        sql = self.dialect.delete(self.table_ref(database, table), primary_key.column, primary_key.value, params)
        with self._translate_errors("delete_row", statement=sql):
            return await self._execute(sql, params, database=database)

    async def create_database(self, name: str, charset: Optional[str] = None, collation: Optional[str] = None) -> None:
        await self._ddl("create_database", [self.dialect.create_database(name, charset, collation)])

    async def drop_database(self, name: str) -> None:
        await self._ddl("drop_database", [self.dialect.drop_database(name)])

    async def create_table(
        self,
        database: str,
        table: str,
        columns: Sequence[ColumnDefinition],
        indexes: Sequence[IndexDefinition] = (),
        foreign_keys: Sequence[ForeignKeyDefinition] = (),
        options: Optional[TableOptions] = None,
    ) -> None:
        statements = self.dialect.create_table(
            self.table_ref(database, table), columns, indexes, foreign_keys, options
        )
        await self._ddl("create_table", statements, database=database)

    async def drop_table(self, database: str, table: str) -> None:
        await self._ddl("drop_table", [self.dialect.drop_table(self.table_ref(database, table))], database=database)

    async def truncate_table(self, database: str, table: str) -> None:
        await self._ddl(
            "truncate_table", [self.dialect.truncate_table(self.table_ref(database, table))], database=database
        )

    async def rename_table(self, database: str, table: str, new_name: str) -> None:
        await self._ddl(
            "rename_table", [self.dialect.rename_table(self.table_ref(database, table), new_name)], database=database
        )

    async def duplicate_table(self, database: str, source: str, target: str, with_data: bool = False) -> None:
        statements = self.dialect.duplicate_table(
            self.table_ref(database, source), self.table_ref(database, target), with_data
        )
        await self._ddl("duplicate_table", statements, database=database)

    async def add_column(
        self, database: str, table: str, column: ColumnDefinition, after: Optional[str] = None
    ) -> None:
        await self._ddl(
            "add_column", self.dialect.add_column(self.table_ref(database, table), column, after), database=database
        )

    async def modify_column(self, database: str, table: str, old_name: str, column: ColumnDefinition) -> None:
        await self._ddl(
            "modify_column",
            self.dialect.modify_column(self.table_ref(database, table), old_name, column),
            database=database,
        )

    async def drop_column(self, database: str, table: str, column: str) -> None:
        await self._ddl(
            "drop_column", [self.dialect.drop_column(self.table_ref(database, table), column)], database=database
        )
