"""MySQL and MariaDB adapter built on aiomysql."""

from typing import Any, Dict, List, Optional

import aiomysql
import pymysql

from ...core.exceptions import AuthenticationError, ConnectionError, ErrorCodes
from ..base import SQLAdapter
from ..dialects import MYSQL
from ..models import ColumnDetail, ForeignKeyInfo, IndexInfo, TableInfo, TableOptions

# Client error codes meaning the server connection is gone
LOST_CONNECTION_CODES = frozenset({2006, 2013, 2014, 2045, 2055})
ACCESS_DENIED = 1045


class MySQLAdapter(SQLAdapter):
    """MySQL/MariaDB adapter.

    Table row counts come from ``information_schema.TABLES.TABLE_ROWS``,
    which is an estimate for InnoDB.
    """

    engine = "mysql"
    component_name = "MySQLAdapter"
    dialect = MYSQL

    def __init__(self, config, settings=None) -> None:
        super().__init__(config, settings)
        self._pool: Optional[aiomysql.Pool] = None
        self._server_version: Optional[str] = None

    async def _async_initialize(self) -> None:
        context = {"host": self.config.resolved_host, "port": self.config.resolved_port}
        try:
            self._pool = await aiomysql.create_pool(
                host=self.config.resolved_host,
                port=self.config.resolved_port,
                user=self.config.username,
                password=self.config.password.get_secret_value(),
                db=self.config.database,
                connect_timeout=self.config.connect_timeout,
                charset="utf8mb4",
                autocommit=True,
                minsize=1,
                maxsize=10,
                pool_recycle=600,
            )
            self._server_version = await self._fetch_scalar("SELECT VERSION()")
        except pymysql.err.OperationalError as e:
            await self._close_pool()
            if e.args and e.args[0] == ACCESS_DENIED:
                raise AuthenticationError(
                    f"MySQL authentication failed: {e.args[-1]}",
                    code=ErrorCodes.AUTH_FAILED,
                    context=context,
                    cause=e,
                ) from e
            raise ConnectionError(
                f"Cannot connect to MySQL: {e.args[-1] if e.args else e}",
                code=ErrorCodes.CONNECTION_REFUSED,
                context=context,
                cause=e,
            ) from e
        except Exception:
            await self._close_pool()
            raise

        self.logger.info("MySQL pool created", server_version=self._server_version, **context)

    async def _close_pool(self) -> None:
        if self._pool is not None:
            pool, self._pool = self._pool, None
            pool.close()
            await pool.wait_closed()

    async def _async_cleanup(self) -> None:
        await self._close_pool()
        self.logger.info("MySQL pool closed")

    def is_transport_error(self, exc: BaseException) -> bool:
        if isinstance(exc, pymysql.err.OperationalError):
            return bool(exc.args) and exc.args[0] in LOST_CONNECTION_CODES
        if isinstance(exc, pymysql.err.InterfaceError):
            return True
        return super().is_transport_error(exc)

    def table_ref(self, database: str, table: str) -> str:
        return self.dialect.qualify(database, table)

    async def _fetch(self, sql, params=(), *, database=None):
        async with self._pool.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(sql, tuple(params) or None)
                rows = await cursor.fetchall()
                columns = [d[0] for d in cursor.description or ()]
        return columns, [list(row) for row in rows]

    async def _execute(self, sql, params=(), *, database=None) -> int:
        async with self._pool.acquire() as conn:
            async with conn.cursor() as cursor:
                return await cursor.execute(sql, tuple(params) or None)

    async def _run_query(self, statement):
        async with self._pool.acquire() as conn:
            async with conn.cursor() as cursor:
                affected = await cursor.execute(statement)
                if cursor.description:
                    rows = await cursor.fetchall()
                    return [d[0] for d in cursor.description], [list(row) for row in rows], None
                return [], [], affected

    async def list_databases(self) -> List[str]:
        self._require_connected()
        with self._translate_errors("list_databases", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch("SHOW DATABASES")
        return [row[0] for row in rows]

    async def list_tables(self, database: str) -> List[TableInfo]:
        self._require_connected()
        with self._translate_errors("list_tables", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT TABLE_NAME, TABLE_ROWS, TABLE_TYPE FROM information_schema.TABLES "
                "WHERE TABLE_SCHEMA = %s ORDER BY TABLE_TYPE, TABLE_NAME",
                (database,),
            )
        return [
            TableInfo(name=name, rows=int(count or 0), is_view=kind == "VIEW")
            for name, count, kind in rows
        ]

    async def list_columns_detailed(self, database: str, table: str) -> List[ColumnDetail]:
        self._require_connected()
        with self._translate_errors("list_columns_detailed", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            names, rows = await self._fetch(
                "SELECT COLUMN_NAME, DATA_TYPE, COLUMN_TYPE, IS_NULLABLE, COLUMN_KEY, "
                "COLUMN_DEFAULT, EXTRA, COLUMN_COMMENT, CHARACTER_MAXIMUM_LENGTH, "
                "NUMERIC_PRECISION, NUMERIC_SCALE, GENERATION_EXPRESSION "
                "FROM information_schema.COLUMNS "
                "WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s ORDER BY ORDINAL_POSITION",
                (database, table),
            )

        columns = []
        for row in rows:
            info: Dict[str, Any] = dict(zip([n.upper() for n in names], row))
            extra = (info["EXTRA"] or "").lower()
            column_type = (info["COLUMN_TYPE"] or "").lower()
            columns.append(ColumnDetail(
                name=info["COLUMN_NAME"],
                type=info["DATA_TYPE"],
                nullable=info["IS_NULLABLE"] == "YES",
                key="PRI" if info["COLUMN_KEY"] == "PRI" else None,
                comment=info["COLUMN_COMMENT"] or None,
                length=info["CHARACTER_MAXIMUM_LENGTH"],
                precision=info["NUMERIC_PRECISION"],
                scale=info["NUMERIC_SCALE"],
                default=None if info["COLUMN_DEFAULT"] is None else str(info["COLUMN_DEFAULT"]),
                auto_increment="auto_increment" in extra,
                unsigned="unsigned" in column_type,
                is_virtual="generated" in extra,
                generation_expression=info["GENERATION_EXPRESSION"] or None,
            ))
        return columns

    async def list_indexes(self, database: str, table: str) -> List[IndexInfo]:
        self._require_connected()
        with self._translate_errors("list_indexes", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            names, rows = await self._fetch(f"SHOW INDEX FROM {self.table_ref(database, table)}")

        indexes: Dict[str, IndexInfo] = {}
        for row in rows:
            info = dict(zip(names, row))
            name = info["Key_name"]
            index = indexes.get(name)
            if index is None:
                method = (info.get("Index_type") or "").upper()
                if method == "FULLTEXT":
                    kind = "fulltext"
                elif not int(info["Non_unique"]):
                    kind = "unique"
                else:
                    kind = "normal"
                index = indexes[name] = IndexInfo(
                    name=name,
                    columns=[],
                    kind=kind,
                    method=method if method in ("BTREE", "HASH") else None,
                    primary=name == "PRIMARY",
                )
            index.columns.append(info["Column_name"])
        return list(indexes.values())

    async def list_foreign_keys(self, database: str, table: str) -> List[ForeignKeyInfo]:
        self._require_connected()
        with self._translate_errors("list_foreign_keys", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT k.CONSTRAINT_NAME, k.COLUMN_NAME, k.REFERENCED_TABLE_NAME, "
                "k.REFERENCED_COLUMN_NAME, r.DELETE_RULE, r.UPDATE_RULE "
                "FROM information_schema.KEY_COLUMN_USAGE k "
                "JOIN information_schema.REFERENTIAL_CONSTRAINTS r "
                "ON r.CONSTRAINT_SCHEMA = k.CONSTRAINT_SCHEMA "
                "AND r.CONSTRAINT_NAME = k.CONSTRAINT_NAME AND r.TABLE_NAME = k.TABLE_NAME "
                "WHERE k.TABLE_SCHEMA = %s AND k.TABLE_NAME = %s "
                "AND k.REFERENCED_TABLE_NAME IS NOT NULL "
                "ORDER BY k.CONSTRAINT_NAME, k.ORDINAL_POSITION",
                (database, table),
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
                    on_delete=on_delete,
                    on_update=on_update,
                )
            fk.columns.append(column)
            fk.referenced_columns.append(ref_column)
        return list(keys.values())

    async def get_table_options(self, database: str, table: str) -> TableOptions:
        self._require_connected()
        with self._translate_errors("get_table_options", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT ENGINE, TABLE_COLLATION, TABLE_COMMENT, AUTO_INCREMENT, ROW_FORMAT "
                "FROM information_schema.TABLES WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s",
                (database, table),
            )
        if not rows:
            return TableOptions()
        engine, collation, comment, auto_increment, row_format = rows[0]
        return TableOptions(
            engine=engine,
            charset=collation.split("_", 1)[0] if collation else None,
            collation=collation,
            comment=comment or None,
            auto_increment=int(auto_increment) if auto_increment is not None else None,
            row_format=row_format,
        )

    async def rename_table(self, database: str, table: str, new_name: str) -> None:
        statement = self.dialect.rename_table(
            self.table_ref(database, table), new_name, new_ref=self.table_ref(database, new_name)
        )
        await self._ddl("rename_table", [statement], database=database)

    def get_connection_info(self) -> Dict[str, Any]:
        info = super().get_connection_info()
        info["server_version"] = self._server_version
        return info
