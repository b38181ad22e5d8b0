"""SQLite adapter built on aiosqlite.

A SQLite file holds exactly one database, exposed as ``main``. The file is
created when it does not exist yet.
"""

import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite

from ...core.exceptions import ConnectionError, ErrorCodes
from ..base import SQLAdapter
from ..dialects import SQLITE
from ..models import ColumnDetail, ForeignKeyInfo, IndexInfo, TableInfo, TableOptions

MAIN_DATABASE = "main"

_TYPE_PATTERN = re.compile(r"^\s*([^(]+?)\s*(?:\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\))?\s*$")


def parse_declared_type(declared: str) -> Tuple[str, Optional[int], Optional[int]]:
    """Split ``VARCHAR(255)`` or ``DECIMAL(10,2)`` into name, length and scale."""
    match = _TYPE_PATTERN.match(declared or "")
    if not match:
        return declared or "", None, None
    name, length, scale = match.groups()
    return name, int(length) if length else None, int(scale) if scale else None


class SQLiteAdapter(SQLAdapter):
    """SQLite adapter.

    Row counts in ``list_tables`` are exact ``COUNT(*)`` values, which is
    cheap for local files.
    """

    engine = "sqlite"
    component_name = "SQLiteAdapter"
    dialect = SQLITE

    def __init__(self, config, settings=None) -> None:
        super().__init__(config, settings)
        self._connection: Optional[aiosqlite.Connection] = None
        self._database_path = Path(config.sqlite_path)

    async def _async_initialize(self) -> None:
        if not self._database_path.parent.exists():
            raise ConnectionError(
                f"Directory for SQLite database does not exist: {self._database_path.parent}",
                code=ErrorCodes.CONNECTION_REFUSED,
                context={"database_path": str(self._database_path)},
            )
        try:
            self._connection = await aiosqlite.connect(
                str(self._database_path), timeout=self.config.connect_timeout
            )
            await self._connection.execute("PRAGMA foreign_keys = ON")
        except sqlite3.DatabaseError as e:
            raise ConnectionError(
                f"Cannot open SQLite database: {e}",
                code=ErrorCodes.CONNECTION_REFUSED,
                context={"database_path": str(self._database_path)},
                cause=e,
            ) from e
        self.logger.info("SQLite database opened", database_path=str(self._database_path))

    async def _async_cleanup(self) -> None:
        if self._connection is not None:
            connection, self._connection = self._connection, None
            await connection.close()
            self.logger.info("SQLite database closed")

    def table_ref(self, database: str, table: str) -> str:
        return self.dialect.quote_identifier(table)

    async def _fetch(self, sql, params=(), *, database=None):
        async with self._connection.execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall()
            columns = [d[0] for d in cursor.description or ()]
        return columns, [list(row) for row in rows]

    async def _execute(self, sql, params=(), *, database=None) -> int:
        cursor = await self._connection.execute(sql, tuple(params))
        await self._connection.commit()
        return cursor.rowcount

    async def _execute_many(self, statements, *, database=None) -> None:
        for statement in statements:
            await self._connection.execute(statement)
        await self._connection.commit()

    async def _run_query(self, statement):
        try:
            cursor = await self._connection.execute(statement)
        except sqlite3.ProgrammingError as e:
            if "one statement" not in str(e):
                raise
            await self._connection.executescript(statement)
            return [], [], None

        async with cursor:
            if cursor.description:
                rows = await cursor.fetchall()
                return [d[0] for d in cursor.description], [list(row) for row in rows], None
            await self._connection.commit()
            return [], [], cursor.rowcount

    async def list_databases(self) -> List[str]:
        return [MAIN_DATABASE]

    async def list_tables(self, database: str) -> List[TableInfo]:
        self._require_connected()
        with self._translate_errors("list_tables", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            _, rows = await self._fetch(
                "SELECT name, type FROM sqlite_master "
                "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' "
                "ORDER BY type, name"
            )
            tables = []
            for name, kind in rows:
                count = await self._fetch_scalar(self.dialect.count(self.dialect.quote_identifier(name)))
                tables.append(TableInfo(name=name, rows=int(count or 0), is_view=kind == "view"))
        return tables

    async def _table_sql(self, table: str) -> str:
        sql = await self._fetch_scalar(
            "SELECT sql FROM sqlite_master WHERE name = ? AND type IN ('table', 'view')", (table,)
        )
        return sql or ""

    async def list_columns_detailed(self, database: str, table: str) -> List[ColumnDetail]:
        self._require_connected()
        ref = self.dialect.quote_identifier(table)
        with self._translate_errors("list_columns_detailed", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            names, rows = await self._fetch(f"PRAGMA table_xinfo({ref})")
            autoincrement = "AUTOINCREMENT" in (await self._table_sql(table)).upper()

        columns = []
        for row in rows:
            info: Dict[str, Any] = dict(zip(names, row))
            # hidden: 0 normal, 1 virtual-table hidden, 2/3 generated
            if info.get("hidden") == 1:
                continue
            type_name, length, scale = parse_declared_type(info["type"])
            is_pk = bool(info["pk"])
            columns.append(ColumnDetail(
                name=info["name"],
                type=info["type"] or "",
                nullable=not info["notnull"] and not is_pk,
                key="PRI" if is_pk else None,
                length=length if scale is None else None,
                precision=length if scale is not None else None,
                scale=scale,
                default=info["dflt_value"],
                auto_increment=is_pk and autoincrement and type_name.upper() == "INTEGER",
                is_virtual=info.get("hidden") in (2, 3),
            ))
        return columns

    async def list_indexes(self, database: str, table: str) -> List[IndexInfo]:
        self._require_connected()
        ref = self.dialect.quote_identifier(table)
        indexes = []
        with self._translate_errors("list_indexes", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            names, rows = await self._fetch(f"PRAGMA index_list({ref})")
            for row in rows:
                info = dict(zip(names, row))
                _, columns = await self._fetch(
                    f"PRAGMA index_info({self.dialect.quote_identifier(info['name'])})"
                )
                primary = info.get("origin") == "pk"
                indexes.append(IndexInfo(
                    name=info["name"],
                    columns=[c[2] for c in sorted(columns, key=lambda c: c[0])],
                    kind="unique" if info["unique"] else "normal",
                    primary=primary,
                ))
        return indexes

    async def list_foreign_keys(self, database: str, table: str) -> List[ForeignKeyInfo]:
        self._require_connected()
        ref = self.dialect.quote_identifier(table)
        with self._translate_errors("list_foreign_keys", code=ErrorCodes.METADATA_EXTRACTION_FAILED):
            names, rows = await self._fetch(f"PRAGMA foreign_key_list({ref})")

        grouped: Dict[int, ForeignKeyInfo] = {}
        for row in sorted(rows, key=lambda r: (r[0], r[1])):
            info = dict(zip(names, row))
            fk = grouped.get(info["id"])
            if fk is None:
                fk = grouped[info["id"]] = ForeignKeyInfo(
                    name=f"fk_{table}_{info['id']}",
                    columns=[],
                    referenced_table=info["table"],
                    referenced_columns=[],
                    on_delete=info["on_delete"],
                    on_update=info["on_update"],
                )
            fk.columns.append(info["from"])
            fk.referenced_columns.append(info["to"])
        return list(grouped.values())

    async def get_table_options(self, database: str, table: str) -> TableOptions:
        return TableOptions(engine="sqlite")

    def get_connection_info(self) -> Dict[str, Any]:
        info = super().get_connection_info()
        info.update(host=None, port=None, database_path=str(self._database_path))
        return info
