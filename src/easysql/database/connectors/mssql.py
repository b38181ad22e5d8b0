"""SQL Server adapter built on aioodbc."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

import aioodbc
import pyodbc

from ...core.exceptions import AuthenticationError, ConnectionError, ErrorCodes
from ..base import SQLAdapter
from ..dialects import SQLSERVER
from ..models import ColumnDetail, ForeignKeyInfo, IndexInfo, TableInfo, TableOptions

SCHEMA = "dbo"
DEFAULT_DATABASE = "master"
DEFAULT_DRIVER = "ODBC Driver 18 for SQL Server"
UNICODE_TYPES = frozenset({"nchar", "nvarchar", "ntext"})


def build_dsn(host: str, port: int, username: str, password: str, database: str, options: Dict[str, Any]) -> str:
    """Build an ODBC connection string; values containing ``;`` are braced."""

    def value(text: Any) -> str:
        text = str(text)
        return "{" + text.replace("}", "}}") + "}" if any(c in text for c in ";{}") else text

    parts = {
        "DRIVER": "{" + options.get("driver", DEFAULT_DRIVER) + "}",
        "SERVER": f"{host},{port}",
        "DATABASE": value(database),
        "UID": value(username),
        "PWD": value(password),
        "TrustServerCertificate": "yes" if options.get("trust_server_certificate", True) else "no",
        "Encrypt": options.get("encrypt", "optional"),
    }
    return ";".join(f"{k}={v}" for k, v in parts.items())


def sqlstate(exc: BaseException) -> str:
    return str(exc.args[0]) if getattr(exc, "args", None) else ""


class SQLServerAdapter(SQLAdapter):
    """SQL Server adapter.

    Pooled connections are switched with ``USE`` before every operation, so
    table references only carry the schema.
    """

    engine = "sqlserver"
    component_name = "SQLServerAdapter"
    dialect = SQLSERVER

    def __init__(self, config, settings=None) -> None:
        super().__init__(config, settings)
        self._pool: Optional[aioodbc.Pool] = None
        self.default_database = config.database or DEFAULT_DATABASE

    async def _async_initialize(self) -> None:
        dsn = build_dsn(
            self.config.resolved_host,
            self.config.resolved_port,
            self.config.username,
            self.config.password.get_secret_value(),
            self.default_database,
            self.config.options,
        )
        context = {"host": self.config.resolved_host, "port": self.config.resolved_port}
        try:
            self._pool = await aioodbc.create_pool(
                dsn=dsn,
                autocommit=True,
                minsize=1,
                maxsize=5,
                timeout=self.config.connect_timeout,
            )
            await self._fetch("SELECT 1")
        except pyodbc.Error as e:
            await self._close_pool()
            if sqlstate(e) == "28000":
                raise AuthenticationError(
                    f"SQL Server authentication failed: {e}",
                    code=ErrorCodes.AUTH_FAILED,
                    context=context,
                    cause=e,
                ) from e
            raise ConnectionError(
                f"Cannot connect to SQL Server: {e}",
                code=ErrorCodes.CONNECTION_REFUSED,
                context=context,
                cause=e,
            ) from e
        self.logger.info("SQL Server pool created", **context)

    async def _close_pool(self) -> None:
        if self._pool is not None:
            pool, self._pool = self._pool, None
            pool.close()
            await pool.wait_closed()

    async def _async_cleanup(self) -> None:
        await self._close_pool()
        self.logger.info("SQL Server pool closed")

    def is_transport_error(self, exc: BaseException) -> bool:
        if isinstance(exc, pyodbc.Error):
            return isinstance(exc, pyodbc.OperationalError) or sqlstate(exc).startswith("08")
        return super().is_transport_error(exc)

    def table_ref(self, database: str, table: str) -> str:
        return self.dialect.qualify(SCHEMA, table)

    @asynccontextmanager
    async def _cursor(self, database: Optional[str] = None) -> AsyncGenerator[Any, None]:
        async with self._pool.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(f"USE {self.dialect.quote_identifier(database or self.default_database)}")
                yield cursor

    async def _fetch(self, sql, params=(), *, database=None):
        async with self._cursor(database) as cursor:
            await cursor.execute(sql, *params)
            rows = await cursor.fetchall()
            columns = [d[0] for d in cursor.description or ()]
        return columns, [list(row) for row in rows]

    async def _execute(self, sql, params=(), *, database=None) -> int:
        async with self._cursor(database) as cursor:
            await cursor.execute(sql, *params)
            return cursor.rowcount

    async def _execute_many(self, statements, *, database=None) -> None:
        async with self._cursor(database) as cursor:
            for statement in statements:
                await cursor.execute(statement)

    async def _run_query(self, statement):
        async with self._cursor() as cursor:
            await cursor.execute(statement)
            if cursor.description:
                rows = await cursor.fetchall()
                return [d[0] for d in cursor.description], [list(row) for row in rows], None
            return [], [], cursor.rowcount

    def _object_name(self, table: str) -> str:
        return self.table_ref("", table)

    async def list_databases(self) -> List[str]:
        self._require_connected()
        with self._translate_errors("list_databases", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch("SELECT name FROM sys.databases WHERE database_id > 4 ORDER BY name")
        return [row[0] for row in rows]

    async def list_tables(self, database: str) -> List[TableInfo]:
        self._require_connected()
        with self._translate_errors("list_tables", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT t.name, SUM(p.rows) AS row_count, 0 AS is_view FROM sys.tables t "
                "LEFT JOIN sys.partitions p ON t.object_id = p.object_id AND p.index_id IN (0, 1) "
                "GROUP BY t.name "
                "UNION ALL "
                "SELECT name, 0, 1 FROM sys.views "
                "ORDER BY is_view, name",
                database=database,
            )
        return [TableInfo(name=name, rows=int(count or 0), is_view=bool(view)) for name, count, view in rows]

    async def list_columns_detailed(self, database: str, table: str) -> List[ColumnDetail]:
        self._require_connected()
        with self._translate_errors("list_columns_detailed", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT c.name, t.name, c.is_nullable, c.max_length, c.precision, c.scale, "
                "c.is_identity, c.is_computed, cc.definition, dc.definition, "
                "CAST(ep.value AS NVARCHAR(4000)), "
                "CASE WHEN pk.column_id IS NULL THEN 0 ELSE 1 END "
                "FROM sys.columns c "
                "JOIN sys.types t ON c.user_type_id = t.user_type_id "
                "LEFT JOIN sys.computed_columns cc "
                "ON cc.object_id = c.object_id AND cc.column_id = c.column_id "
                "LEFT JOIN sys.default_constraints dc ON dc.object_id = c.default_object_id "
                "LEFT JOIN sys.extended_properties ep ON ep.major_id = c.object_id "
                "AND ep.minor_id = c.column_id AND ep.name = 'MS_Description' "
                "LEFT JOIN (SELECT ic.object_id, ic.column_id FROM sys.index_columns ic "
                "JOIN sys.indexes i ON i.object_id = ic.object_id AND i.index_id = ic.index_id "
                "WHERE i.is_primary_key = 1) pk "
                "ON pk.object_id = c.object_id AND pk.column_id = c.column_id "
                "WHERE c.object_id = OBJECT_ID(?) ORDER BY c.column_id",
                (self._object_name(table),),
                database=database,
            )

        columns = []
        for (name, type_name, nullable, max_length, precision, scale,
             identity, computed, expression, default, comment, primary) in rows:
            length = None
            if max_length and max_length > 0 and type_name in ("char", "varchar", "binary", "varbinary", *UNICODE_TYPES):
                length = max_length // 2 if type_name in UNICODE_TYPES else max_length
            columns.append(ColumnDetail(
                name=name,
                type=type_name,
                nullable=bool(nullable),
                key="PRI" if primary else None,
                comment=comment,
                length=length,
                precision=precision or None,
                scale=scale if precision else None,
                default=default,
                auto_increment=bool(identity),
                is_virtual=bool(computed),
                generation_expression=expression,
            ))
        return columns

    async def list_indexes(self, database: str, table: str) -> List[IndexInfo]:
        self._require_connected()
        with self._translate_errors("list_indexes", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT i.name, i.is_unique, i.is_primary_key, i.type_desc, c.name "
                "FROM sys.indexes i "
                "JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id "
                "JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id "
                "WHERE i.object_id = OBJECT_ID(?) AND i.name IS NOT NULL AND ic.is_included_column = 0 "
                "ORDER BY i.name, ic.key_ordinal",
                (self._object_name(table),),
                database=database,
            )

        indexes: Dict[str, IndexInfo] = {}
        for name, unique, primary, method, column in rows:
            index = indexes.get(name)
            if index is None:
                index = indexes[name] = IndexInfo(
                    name=name,
                    columns=[],
                    kind="unique" if unique else "normal",
                    method=method,
                    primary=bool(primary),
                )
            index.columns.append(column)
        return list(indexes.values())

    async def list_foreign_keys(self, database: str, table: str) -> List[ForeignKeyInfo]:
        self._require_connected()
        with self._translate_errors("list_foreign_keys", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT fk.name, pc.name, rt.name, rc.name, "
                "fk.delete_referential_action_desc, fk.update_referential_action_desc "
                "FROM sys.foreign_keys fk "
                "JOIN sys.foreign_key_columns fkc ON fkc.constraint_object_id = fk.object_id "
                "JOIN sys.columns pc ON pc.object_id = fkc.parent_object_id "
                "AND pc.column_id = fkc.parent_column_id "
                "JOIN sys.tables rt ON rt.object_id = fkc.referenced_object_id "
                "JOIN sys.columns rc ON rc.object_id = fkc.referenced_object_id "
                "AND rc.column_id = fkc.referenced_column_id "
                "WHERE fk.parent_object_id = OBJECT_ID(?) "
                "ORDER BY fk.name, fkc.constraint_column_id",
                (self._object_name(table),),
                database=database,
            )

        keys: Dict[str, ForeignKeyInfo] = {}
        for name, column, ref_table, ref_column, on_delete, on_update in rows:
            fk = keys.get(name)
            if fk is None:
                fk = keys[name] = ForeignKeyInfo(
                    name=name,
                    columns=[],
                    referenced_table=ref_table,
                    referenced_columns=[],
                    on_delete=on_delete.replace("_", " ") if on_delete else None,
                    on_update=on_update.replace("_", " ") if on_update else None,
                )
            fk.columns.append(column)
            fk.referenced_columns.append(ref_column)
        return list(keys.values())

    async def get_table_options(self, database: str, table: str) -> TableOptions:
        self._require_connected()
        with self._translate_errors("get_table_options", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT CAST(DATABASEPROPERTYEX(DB_NAME(), 'Collation') AS NVARCHAR(128)), "
                "(SELECT CAST(value AS NVARCHAR(4000)) FROM sys.extended_properties "
                "WHERE major_id = OBJECT_ID(?) AND minor_id = 0 AND name = 'MS_Description')",
                (self._object_name(table),),
                database=database,
            )
        if not rows:
            return TableOptions()
        collation, comment = rows[0]
        return TableOptions(collation=collation, comment=comment)
