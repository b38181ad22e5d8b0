"""PostgreSQL adapter built on asyncpg.

PostgreSQL cannot switch databases on an open connection, so the adapter
keeps one small pool per database, created on first use. Only the
``public`` schema is browsed.
"""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import asyncpg

from ...core.exceptions import AuthenticationError, ConnectionError, ErrorCodes
from ..base import SQLAdapter
from ..dialects import POSTGRES
from ..models import ColumnDetail, ForeignKeyInfo, IndexInfo, TableInfo, TableOptions

SCHEMA = "public"
DEFAULT_DATABASE = "postgres"

TRANSPORT_ERRORS = (
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
)


def rowcount_from_status(status: Optional[str]) -> int:
    """Extract the row count from a command tag such as ``UPDATE 3``."""
    if not status:
        return 0
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0


class PostgreSQLAdapter(SQLAdapter):
    """PostgreSQL adapter.

    Row values in inserts and updates are sent as untyped literals so that
    PostgreSQL coerces text to the column type.
    """

    engine = "postgres"
    component_name = "PostgreSQLAdapter"
    dialect = POSTGRES

    def __init__(self, config, settings=None) -> None:
        super().__init__(config, settings)
        self._pools: Dict[str, asyncpg.Pool] = {}
        self._pool_lock = asyncio.Lock()
        self.default_database = config.database or DEFAULT_DATABASE

    async def _async_initialize(self) -> None:
        pool = await self._get_pool(self.default_database)
        try:
            async with pool.acquire() as conn:
                version = await conn.fetchval("SHOW server_version")
        except Exception:
            await self._close_pool(self.default_database)
            raise
        self.logger.info(
            "PostgreSQL pool created",
            host=self.config.resolved_host,
            port=self.config.resolved_port,
            database=self.default_database,
            server_version=version,
        )

    async def _create_pool(self, database: str) -> asyncpg.Pool:
        context = {
            "host": self.config.resolved_host,
            "port": self.config.resolved_port,
            "database": database,
        }
        try:
            return await asyncpg.create_pool(
                host=self.config.resolved_host,
                port=self.config.resolved_port,
                user=self.config.username,
                password=self.config.password.get_secret_value(),
                database=database,
                timeout=self.config.connect_timeout,
                min_size=1,
                max_size=5,
            )
        except (asyncpg.InvalidPasswordError, asyncpg.InvalidAuthorizationSpecificationError) as e:
            raise AuthenticationError(
                f"PostgreSQL authentication failed: {e}",
                code=ErrorCodes.AUTH_FAILED,
                context=context,
                cause=e,
            ) from e
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
            raise ConnectionError(
                f"Cannot connect to PostgreSQL: {e}",
                code=ErrorCodes.CONNECTION_REFUSED,
                context=context,
                cause=e,
            ) from e

    async def _get_pool(self, database: Optional[str] = None) -> asyncpg.Pool:
        name = database or self.default_database
        async with self._pool_lock:
            pool = self._pools.get(name)
            if pool is None:
                pool = self._pools[name] = await self._create_pool(name)
            return pool

    async def _close_pool(self, database: str) -> None:
        async with self._pool_lock:
            pool = self._pools.pop(database, None)
        if pool is not None:
            await pool.close()

    async def _async_cleanup(self) -> None:
        async with self._pool_lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            await pool.close()
        self.logger.info("PostgreSQL pools closed", pools=len(pools))

    def is_transport_error(self, exc: BaseException) -> bool:
        return isinstance(exc, TRANSPORT_ERRORS) or super().is_transport_error(exc)

    def table_ref(self, database: str, table: str) -> str:
        return self.dialect.qualify(SCHEMA, table)

    def _regclass(self, table: str) -> str:
        return self.table_ref("", table)

    async def _fetch(self, sql, params=(), *, database=None):
        pool = await self._get_pool(database)
        async with pool.acquire() as conn:
            statement = await conn.prepare(sql)
            records = await statement.fetch(*params)
            columns = [attribute.name for attribute in statement.get_attributes()]
        return columns, [list(record.values()) for record in records]

    async def _execute(self, sql, params=(), *, database=None) -> int:
        pool = await self._get_pool(database)
        async with pool.acquire() as conn:
            return rowcount_from_status(await conn.execute(sql, *params))

    async def _execute_many(self, statements: Sequence[str], *, database=None) -> None:
        pool = await self._get_pool(database)
        async with pool.acquire() as conn:
            for statement in statements:
                await conn.execute(statement)

    async def _run_query(self, statement):
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            try:
                prepared = await conn.prepare(statement)
            except asyncpg.exceptions.PostgresSyntaxError as e:
                if "multiple commands" not in str(e):
                    raise
                await conn.execute(statement)
                return [], [], None

            records = await prepared.fetch()
            attributes = prepared.get_attributes()
            if attributes:
                return [a.name for a in attributes], [list(r.values()) for r in records], None
            return [], [], rowcount_from_status(prepared.get_statusmsg())

    async def list_databases(self) -> List[str]:
        self._require_connected()
        with self._translate_errors("list_databases", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT datname FROM pg_database WHERE datistemplate = false ORDER BY datname"
            )
        return [row[0] for row in rows]

    async def list_tables(self, database: str) -> List[TableInfo]:
        self._require_connected()
        with self._translate_errors("list_tables", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, tables = await self._fetch(
                "SELECT c.relname, c.reltuples::bigint FROM pg_class c "
                "JOIN pg_namespace n ON n.oid = c.relnamespace "
                "WHERE n.nspname = $1 AND c.relkind IN ('r', 'p') ORDER BY c.relname",
                (SCHEMA,),
                database=database,
            )
            _, views = await self._fetch(
                "SELECT viewname FROM pg_views WHERE schemaname = $1 ORDER BY viewname",
                (SCHEMA,),
                database=database,
            )
        # reltuples is -1 for tables that were never analyzed
        result = [TableInfo(name=name, rows=max(int(count or 0), 0)) for name, count in tables]
        result.extend(TableInfo(name=name, rows=0, is_view=True) for (name,) in views)
        return result

    async def _primary_key_columns(self, database: str, table: str) -> List[str]:
        _, rows = await self._fetch(
            "SELECT a.attname FROM pg_index i "
            "JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey) "
            "WHERE i.indrelid = $1::regclass AND i.indisprimary",
            (self._regclass(table),),
            database=database,
        )
        return [row[0] for row in rows]

    async def list_columns_detailed(self, database: str, table: str) -> List[ColumnDetail]:
        self._require_connected()
        with self._translate_errors("list_columns_detailed", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            names, rows = await self._fetch(
                "SELECT c.column_name, c.data_type, c.is_nullable, c.column_default, "
                "c.character_maximum_length, c.numeric_precision, c.numeric_scale, "
                "c.is_identity, c.is_generated, c.generation_expression, pgd.description "
                "FROM information_schema.columns c "
                "LEFT JOIN pg_catalog.pg_statio_all_tables st "
                "ON c.table_schema = st.schemaname AND c.table_name = st.relname "
                "LEFT JOIN pg_catalog.pg_description pgd "
                "ON pgd.objoid = st.relid AND pgd.objsubid = c.ordinal_position "
                "WHERE c.table_schema = $1 AND c.table_name = $2 ORDER BY c.ordinal_position",
                (SCHEMA, table),
                database=database,
            )
            primary = set(await self._primary_key_columns(database, table)) if rows else set()

        columns = []
        for row in rows:
            info: Dict[str, Any] = dict(zip(names, row))
            default = info["column_default"]
            columns.append(ColumnDetail(
                name=info["column_name"],
                type=info["data_type"],
                nullable=info["is_nullable"] == "YES",
                key="PRI" if info["column_name"] in primary else None,
                comment=info["description"],
                length=info["character_maximum_length"],
                precision=info["numeric_precision"],
                scale=info["numeric_scale"],
                default=default,
                auto_increment=info["is_identity"] == "YES" or bool(default and default.startswith("nextval(")),
                is_virtual=info["is_generated"] == "ALWAYS",
                generation_expression=info["generation_expression"],
            ))
        return columns

    async def list_indexes(self, database: str, table: str) -> List[IndexInfo]:
        self._require_connected()
        with self._translate_errors("list_indexes", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT i.relname, ix.indisunique, ix.indisprimary, am.amname, "
                "array_agg(a.attname ORDER BY k.ord) "
                "FROM pg_index ix "
                "JOIN pg_class i ON i.oid = ix.indexrelid "
                "JOIN pg_am am ON am.oid = i.relam "
                "CROSS JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, ord) "
                "JOIN pg_attribute a ON a.attrelid = ix.indrelid AND a.attnum = k.attnum "
                "WHERE ix.indrelid = $1::regclass "
                "GROUP BY i.relname, ix.indisunique, ix.indisprimary, am.amname "
                "ORDER BY i.relname",
                (self._regclass(table),),
                database=database,
            )
        return [
            IndexInfo(
                name=name,
                columns=list(columns),
                kind="unique" if unique else "normal",
                method=method.upper() if method else None,
                primary=primary,
            )
            for name, unique, primary, method, columns in rows
        ]

    async def list_foreign_keys(self, database: str, table: str) -> List[ForeignKeyInfo]:
        self._require_connected()
        with self._translate_errors("list_foreign_keys", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT tc.constraint_name, kcu.column_name, ccu.table_name, ccu.column_name, "
                "rc.delete_rule, rc.update_rule "
                "FROM information_schema.table_constraints tc "
                "JOIN information_schema.key_column_usage kcu "
                "ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema "
                "JOIN information_schema.referential_constraints rc "
                "ON rc.constraint_name = tc.constraint_name AND rc.constraint_schema = tc.table_schema "
                "JOIN information_schema.key_column_usage ccu "
                "ON ccu.constraint_name = rc.unique_constraint_name "
                "AND ccu.constraint_schema = rc.unique_constraint_schema "
                "AND ccu.ordinal_position = kcu.position_in_unique_constraint "
                "WHERE tc.constraint_type = 'FOREIGN KEY' "
                "AND tc.table_schema = $1 AND tc.table_name = $2 "
                "ORDER BY tc.constraint_name, kcu.ordinal_position",
                (SCHEMA, table),
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
                "SELECT obj_description($1::regclass, 'pg_class'), "
                "pg_encoding_to_char(d.encoding), d.datcollate "
                "FROM pg_database d WHERE d.datname = current_database()",
                (self._regclass(table),),
                database=database,
            )
        if not rows:
            return TableOptions()
        comment, charset, collation = rows[0]
        return TableOptions(charset=charset, collation=collation, comment=comment)

    async def drop_database(self, name: str) -> None:
        # The target database must have no open connections
        await self._close_pool(name)
        await super().drop_database(name)

    def get_connection_info(self) -> Dict[str, Any]:
        info = super().get_connection_info()
        info["open_pools"] = sorted(self._pools)
        return info
