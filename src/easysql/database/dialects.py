"""SQL dialects: identifier quoting, literal escaping and statement builders.

Every relational adapter builds its statements through one of the dialect
singletons below, so quoting rules live in a single place. Builders keep the
caller's column order and constraint placement exactly.

Classes:
    Dialect: Shared builder logic (ANSI double-quote flavour)
    MySQLDialect: Backtick quoting, inline indexes and table options
    PostgresDialect: Double quotes, identity columns, COMMENT ON statements
    SQLiteDialect: Double quotes, no ALTER COLUMN, no databases
    SQLServerDialect: Bracket quoting, IDENTITY, OFFSET/FETCH paging

Example:
    >>> MYSQL.quote_identifier("order")
    '`order`'
    >>> SQLSERVER.select_page("[app].[dbo].[users]", limit=10, offset=20)
    'SELECT * FROM [app].[dbo].[users] ORDER BY (SELECT NULL) OFFSET 20 ROWS FETCH NEXT 10 ROWS ONLY'
"""

import dataclasses
import re
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from ..core.exceptions import UnsupportedOperation, ValidationError
from .models import ColumnDefinition, ForeignKeyDefinition, IndexDefinition, TableOptions

RAW_DEFAULTS = frozenset({
    "NULL",
    "CURRENT_TIMESTAMP",
    "CURRENT_DATE",
    "CURRENT_TIME",
    "LOCALTIMESTAMP",
    "NOW()",
    "GETDATE()",
    "SYSDATETIME()",
    "NEWID()",
    "GEN_RANDOM_UUID()",
    "TRUE",
    "FALSE",
})
_NUMERIC = re.compile(r"^-?\d+(\.\d+)?$")
_SIZED_TYPES = frozenset({
    "char", "varchar", "nchar", "nvarchar", "binary", "varbinary", "bit",
    "decimal", "numeric", "float", "double", "real", "time", "datetime2",
    "timestamp", "datetimeoffset", "character varying", "character",
})


class Dialect:
    """Base dialect with ANSI quoting.

    Subclasses override the class attributes and the few builders whose
    syntax differs between engines.
    """

    name = "ansi"
    quote_open = '"'
    quote_close = '"'
    supports_comments = False
    supports_unsigned = False
    supports_after = False
    supports_databases = True
    supports_alter_column = True

    # Identifiers and literals

    def quote_identifier(self, identifier: str) -> str:
        if identifier is None or str(identifier) == "":
            raise ValidationError("Identifier cannot be empty")
        escaped = str(identifier).replace(self.quote_close, self.quote_close * 2)
        return f"{self.quote_open}{escaped}{self.quote_close}"

    def qualify(self, *parts: Optional[str]) -> str:
        """Quote and join the non-empty parts with dots."""
        return ".".join(self.quote_identifier(p) for p in parts if p)

    def escape_string(self, text: str) -> str:
        return text.replace("'", "''")

    def quote_literal(self, value: Any) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return self.boolean_literal(value)
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        return f"'{self.escape_string(str(value))}'"

    def boolean_literal(self, value: bool) -> str:
        return "TRUE" if value else "FALSE"

    def placeholder(self, index: int) -> str:
        """Return the driver placeholder for the 1-based parameter ``index``."""
        return "?"

    def bind(self, value: Any, params: List[Any]) -> str:
        """Return the SQL fragment for ``value``, appending to ``params`` if bound."""
        params.append(value)
        return self.placeholder(len(params))

    def default_literal(self, value: Any) -> str:
        """Render a column default; SQL keywords and numbers stay raw."""
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.upper() in RAW_DEFAULTS or _NUMERIC.match(stripped):
                return stripped
        return self.quote_literal(value)

    # Column definitions

    def column_type(self, column: ColumnDefinition) -> str:
        type_name = column.type.strip()
        if "(" not in type_name and column.length:
            if column.scale is not None and type_name.lower() in ("decimal", "numeric"):
                type_name = f"{type_name}({column.length},{column.scale})"
            elif type_name.lower() in _SIZED_TYPES:
                type_name = f"{type_name}({column.length})"
        if column.unsigned and self.supports_unsigned:
            type_name = f"{type_name} UNSIGNED"
        return type_name

    def auto_increment_clause(self, column: ColumnDefinition) -> str:
        return "GENERATED BY DEFAULT AS IDENTITY"

    def column_definition(self, column: ColumnDefinition, *, inline_primary_key: bool = False) -> str:
        parts = [self.quote_identifier(column.name), self.column_type(column)]
        parts.append("NULL" if column.nullable else "NOT NULL")
        if column.default is not None and not column.auto_increment:
            parts.append(f"DEFAULT {self.default_literal(column.default)}")
        if inline_primary_key:
            parts.append("PRIMARY KEY")
        if column.auto_increment:
            parts.append(self.auto_increment_clause(column))
        if column.comment and self.supports_comments:
            parts.append(f"COMMENT {self.quote_literal(column.comment)}")
        return " ".join(parts)

    def foreign_key_clause(self, fk: ForeignKeyDefinition) -> str:
        clause = (
            f"CONSTRAINT {self.quote_identifier(fk.name)} "
            f"FOREIGN KEY ({self._column_list(fk.columns)}) "
            f"REFERENCES {self.quote_identifier(fk.referenced_table)} "
            f"({self._column_list(fk.referenced_columns)})"
        )
        if fk.on_delete:
            clause += f" ON DELETE {fk.on_delete}"
        if fk.on_update:
            clause += f" ON UPDATE {fk.on_update}"
        return clause

    def _column_list(self, columns: Sequence[str]) -> str:
        return ", ".join(self.quote_identifier(c) for c in columns)

    # Tables

    def create_table(
        self,
        table_ref: str,
        columns: Sequence[ColumnDefinition],
        indexes: Sequence[IndexDefinition] = (),
        foreign_keys: Sequence[ForeignKeyDefinition] = (),
        options: Optional[TableOptions] = None,
    ) -> List[str]:
        """Build the statements creating a table with its indexes.

        Returns a list because most engines create secondary indexes (and
        comments) in separate statements.
        """
        if not columns:
            raise ValidationError("A table needs at least one column")

        body = [self.column_definition(c) for c in columns]
        primary = [c.name for c in columns if c.primary_key]
        if primary:
            body.append(f"PRIMARY KEY ({self._column_list(primary)})")
        body.extend(self.foreign_key_clause(fk) for fk in foreign_keys)

        statements = [f"CREATE TABLE {table_ref} (\n  " + ",\n  ".join(body) + "\n)"]
        for index in indexes:
            statements.append(self.create_index(table_ref, index))
        return statements

    def create_index(self, table_ref: str, index: IndexDefinition) -> str:
        if index.kind == "fulltext":
            raise UnsupportedOperation(
                f"{self.name} does not support FULLTEXT indexes",
                code="OPERATION_NOT_SUPPORTED",
            )
        unique = "UNIQUE " if index.kind == "unique" else ""
        return (
            f"CREATE {unique}INDEX {self.quote_identifier(index.name)} "
            f"ON {table_ref} ({self._column_list(index.columns)})"
        )

    def drop_table(self, table_ref: str) -> str:
        return f"DROP TABLE {table_ref}"

    def truncate_table(self, table_ref: str) -> str:
        return f"TRUNCATE TABLE {table_ref}"

    def rename_table(self, table_ref: str, new_name: str) -> str:
        return f"ALTER TABLE {table_ref} RENAME TO {self.quote_identifier(new_name)}"

    def duplicate_table(self, source_ref: str, target_ref: str, with_data: bool) -> List[str]:
        where = "" if with_data else " WHERE 1 = 0"
        return [f"CREATE TABLE {target_ref} AS SELECT * FROM {source_ref}{where}"]

    # Columns

    def add_column(self, table_ref: str, column: ColumnDefinition, after: Optional[str] = None) -> List[str]:
        statement = f"ALTER TABLE {table_ref} ADD COLUMN {self.column_definition(column)}"
        if after and self.supports_after:
            statement += f" AFTER {self.quote_identifier(after)}"
        return [statement]

    def modify_column(self, table_ref: str, old_name: str, column: ColumnDefinition) -> List[str]:
        raise UnsupportedOperation(
            f"{self.name} cannot modify columns in place",
            code="OPERATION_NOT_SUPPORTED",
        )

    def drop_column(self, table_ref: str, column: str) -> str:
        return f"ALTER TABLE {table_ref} DROP COLUMN {self.quote_identifier(column)}"

    # Databases

    def create_database(self, name: str, charset: Optional[str] = None, collation: Optional[str] = None) -> str:
        return f"CREATE DATABASE {self.quote_identifier(name)}"

    def drop_database(self, name: str) -> str:
        return f"DROP DATABASE {self.quote_identifier(name)}"

    # Rows

    def count(self, table_ref: str) -> str:
        return f"SELECT COUNT(*) FROM {table_ref}"

    def select_page(self, table_ref: str, limit: int, offset: int) -> str:
        return f"SELECT * FROM {table_ref} LIMIT {int(limit)} OFFSET {int(offset)}"

    def insert(self, table_ref: str, values: dict, params: List[Any]) -> str:
        if not values:
            raise ValidationError("Insert requires at least one value")
        columns = self._column_list(list(values))
        fragments = ", ".join(self.bind(v, params) for v in values.values())
        return f"INSERT INTO {table_ref} ({columns}) VALUES ({fragments})"

    def update(self, table_ref: str, updates: dict, key_column: str, key_value: Any, params: List[Any]) -> str:
        if not updates:
            raise ValidationError("Update requires at least one column")
        assignments = ", ".join(
            f"{self.quote_identifier(column)} = {self.bind(value, params)}"
            for column, value in updates.items()
        )
        where = f"{self.quote_identifier(key_column)} = {self.bind(key_value, params)}"
        return f"UPDATE {table_ref} SET {assignments} WHERE {where}"

    def delete(self, table_ref: str, key_column: str, key_value: Any, params: List[Any]) -> str:
        where = f"{self.quote_identifier(key_column)} = {self.bind(key_value, params)}"
        return f"DELETE FROM {table_ref} WHERE {where}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class MySQLDialect(Dialect):
    name = "mysql"
    quote_open = "`"
    quote_close = "`"
    supports_comments = True
    supports_unsigned = True
    supports_after = True

    def escape_string(self, text: str) -> str:
        return text.replace("\\", "\\\\").replace("'", "''")

    def placeholder(self, index: int) -> str:
        return "%s"

    def auto_increment_clause(self, column: ColumnDefinition) -> str:
        return "AUTO_INCREMENT"

    def create_table(self, table_ref, columns, indexes=(), foreign_keys=(), options=None):
        if not columns:
            raise ValidationError("A table needs at least one column")

        body = [self.column_definition(c) for c in columns]
        primary = [c.name for c in columns if c.primary_key]
        if primary:
            body.append(f"PRIMARY KEY ({self._column_list(primary)})")
        body.extend(self.index_clause(index) for index in indexes)
        body.extend(self.foreign_key_clause(fk) for fk in foreign_keys)

        statement = f"CREATE TABLE {table_ref} (\n  " + ",\n  ".join(body) + "\n)"
        table_options = self.table_options(options)
        if table_options:
            statement += " " + table_options
        return [statement]

    def index_clause(self, index: IndexDefinition) -> str:
        prefix = {"unique": "UNIQUE KEY", "fulltext": "FULLTEXT KEY"}.get(index.kind, "KEY")
        clause = f"{prefix} {self.quote_identifier(index.name)} ({self._column_list(index.columns)})"
        if index.method and index.kind != "fulltext":
            clause += f" USING {index.method.upper()}"
        return clause

    def create_index(self, table_ref: str, index: IndexDefinition) -> str:
        kind = {"unique": "UNIQUE ", "fulltext": "FULLTEXT "}.get(index.kind, "")
        statement = (
            f"CREATE {kind}INDEX {self.quote_identifier(index.name)} "
            f"ON {table_ref} ({self._column_list(index.columns)})"
        )
        if index.method and index.kind != "fulltext":
            statement += f" USING {index.method.upper()}"
        return statement

    def table_options(self, options: Optional[TableOptions]) -> str:
        if options is None:
            return ""
        parts = []
        if options.engine:
            parts.append(f"ENGINE={options.engine}")
        if options.charset:
            parts.append(f"DEFAULT CHARSET={options.charset}")
        if options.collation:
            parts.append(f"COLLATE={options.collation}")
        if options.auto_increment:
            parts.append(f"AUTO_INCREMENT={int(options.auto_increment)}")
        if options.row_format:
            parts.append(f"ROW_FORMAT={options.row_format}")
        if options.comment:
            parts.append(f"COMMENT={self.quote_literal(options.comment)}")
        return " ".join(parts)

    def rename_table(self, table_ref: str, new_name: str, *, new_ref: Optional[str] = None) -> str:
        return f"RENAME TABLE {table_ref} TO {new_ref or self.quote_identifier(new_name)}"

    def duplicate_table(self, source_ref: str, target_ref: str, with_data: bool) -> List[str]:
        statements = [f"CREATE TABLE {target_ref} LIKE {source_ref}"]
        if with_data:
            statements.append(f"INSERT INTO {target_ref} SELECT * FROM {source_ref}")
        return statements

    def modify_column(self, table_ref: str, old_name: str, column: ColumnDefinition) -> List[str]:
        return [
            f"ALTER TABLE {table_ref} CHANGE COLUMN {self.quote_identifier(old_name)} "
            f"{self.column_definition(column)}"
        ]

    def create_database(self, name, charset=None, collation=None):
        statement = f"CREATE DATABASE {self.quote_identifier(name)}"
        if charset:
            statement += f" CHARACTER SET {charset}"
        if collation:
            statement += f" COLLATE {collation}"
        return statement


class PostgresDialect(Dialect):
    """PostgreSQL dialect.

    Row values are inlined as untyped literals instead of bound, so that
    PostgreSQL coerces text coming from the grid to the column type.
    """

    name = "postgres"

    def placeholder(self, index: int) -> str:
        return f"${index}"

    def bind(self, value: Any, params: List[Any]) -> str:
        return self.quote_literal(value)

    def create_table(self, table_ref, columns, indexes=(), foreign_keys=(), options=None):
        statements = super().create_table(table_ref, columns, indexes, foreign_keys, options)
        statements.extend(self._comment_statements(table_ref, columns, options))
        return statements

    def _comment_statements(
        self,
        table_ref: str,
        columns: Sequence[ColumnDefinition],
        options: Optional[TableOptions],
    ) -> List[str]:
        statements = []
        if options is not None and options.comment:
            statements.append(f"COMMENT ON TABLE {table_ref} IS {self.quote_literal(options.comment)}")
        for column in columns:
            if column.comment:
                statements.append(
                    f"COMMENT ON COLUMN {table_ref}.{self.quote_identifier(column.name)} "
                    f"IS {self.quote_literal(column.comment)}"
                )
        return statements

    def add_column(self, table_ref, column, after=None):
        statements = super().add_column(table_ref, column)
        statements.extend(self._comment_statements(table_ref, [column], None))
        return statements

    def modify_column(self, table_ref: str, old_name: str, column: ColumnDefinition) -> List[str]:
        statements = []
        name = self.quote_identifier(column.name)
        if old_name != column.name:
            statements.append(
                f"ALTER TABLE {table_ref} RENAME COLUMN {self.quote_identifier(old_name)} TO {name}"
            )
        column_type = self.column_type(column)
        statements.append(
            f"ALTER TABLE {table_ref} ALTER COLUMN {name} TYPE {column_type} USING {name}::{column_type}"
        )
        statements.append(
            f"ALTER TABLE {table_ref} ALTER COLUMN {name} "
            + ("DROP NOT NULL" if column.nullable else "SET NOT NULL")
        )
        if column.default is None:
            statements.append(f"ALTER TABLE {table_ref} ALTER COLUMN {name} DROP DEFAULT")
        else:
            statements.append(
                f"ALTER TABLE {table_ref} ALTER COLUMN {name} SET DEFAULT {self.default_literal(column.default)}"
            )
        comment = self.quote_literal(column.comment) if column.comment else "NULL"
        statements.append(f"COMMENT ON COLUMN {table_ref}.{name} IS {comment}")
        return statements

    def create_database(self, name, charset=None, collation=None):
        statement = f"CREATE DATABASE {self.quote_identifier(name)}"
        if charset:
            statement += f" ENCODING {self.quote_literal(charset)}"
        if collation:
            statement += f" LC_COLLATE {self.quote_literal(collation)}"
        return statement


class SQLiteDialect(Dialect):
    name = "sqlite"
    supports_databases = False
    supports_alter_column = False

    def boolean_literal(self, value: bool) -> str:
        return "1" if value else "0"

    def auto_increment_clause(self, column: ColumnDefinition) -> str:
        return "AUTOINCREMENT"

    def create_table(self, table_ref, columns, indexes=(), foreign_keys=(), options=None):
        if not columns:
            raise ValidationError("A table needs at least one column")

        primary = [c for c in columns if c.primary_key]
        # AUTOINCREMENT is only legal on an inline INTEGER PRIMARY KEY
        inline_pk = len(primary) == 1 and primary[0].auto_increment
        body = []
        for column in columns:
            if inline_pk and column is primary[0]:
                body.append(self.column_definition(column, inline_primary_key=True))
            else:
                body.append(self.column_definition(dataclasses.replace(column, auto_increment=False)))
        if primary and not inline_pk:
            body.append(f"PRIMARY KEY ({self._column_list([c.name for c in primary])})")
        body.extend(self.foreign_key_clause(fk) for fk in foreign_keys)

        statements = [f"CREATE TABLE {table_ref} (\n  " + ",\n  ".join(body) + "\n)"]
        for index in indexes:
            statements.append(self.create_index(table_ref, index))
        return statements

    def column_type(self, column: ColumnDefinition) -> str:
        if column.auto_increment and column.primary_key:
            return "INTEGER"
        return super().column_type(column)

    def truncate_table(self, table_ref: str) -> str:
        return f"DELETE FROM {table_ref}"

    def create_database(self, name, charset=None, collation=None):
        raise UnsupportedOperation(
            "SQLite has a single database per file",
            code="OPERATION_NOT_SUPPORTED",
        )

    def drop_database(self, name):
        raise UnsupportedOperation(
            "SQLite has a single database per file",
            code="OPERATION_NOT_SUPPORTED",
        )

    def modify_column(self, table_ref, old_name, column):
        raise UnsupportedOperation(
            "SQLite has no ALTER COLUMN; recreate the table instead",
            code="OPERATION_NOT_SUPPORTED",
        )


class SQLServerDialect(Dialect):
    name = "sqlserver"
    quote_open = "["
    quote_close = "]"

    def boolean_literal(self, value: bool) -> str:
        return "1" if value else "0"

    def quote_literal(self, value: Any) -> str:
        if isinstance(value, str):
            return f"N'{self.escape_string(value)}'"
        return super().quote_literal(value)

    def auto_increment_clause(self, column: ColumnDefinition) -> str:
        return "IDENTITY(1,1)"

    def select_page(self, table_ref: str, limit: int, offset: int) -> str:
        return (
            f"SELECT * FROM {table_ref} ORDER BY (SELECT NULL) "
            f"OFFSET {int(offset)} ROWS FETCH NEXT {int(limit)} ROWS ONLY"
        )

    def add_column(self, table_ref, column, after=None):
        return [f"ALTER TABLE {table_ref} ADD {self.column_definition(column)}"]

    def rename_table(self, table_ref: str, new_name: str, *, object_name: Optional[str] = None) -> str:
        return f"EXEC sp_rename {self.quote_literal(object_name or table_ref)}, {self.quote_literal(new_name)}"

    def rename_column(self, object_name: str, old_name: str, new_name: str) -> str:
        return (
            f"EXEC sp_rename {self.quote_literal(object_name + '.' + self.quote_identifier(old_name))}, "
            f"{self.quote_literal(new_name)}, 'COLUMN'"
        )

    def modify_column(self, table_ref: str, old_name: str, column: ColumnDefinition) -> List[str]:
        statements = []
        if old_name != column.name:
            statements.append(self.rename_column(table_ref, old_name, column.name))
        null = "NULL" if column.nullable else "NOT NULL"
        statements.append(
            f"ALTER TABLE {table_ref} ALTER COLUMN {self.quote_identifier(column.name)} "
            f"{self.column_type(column)} {null}"
        )
        return statements

    def duplicate_table(self, source_ref: str, target_ref: str, with_data: bool) -> List[str]:
        where = "" if with_data else " WHERE 1 = 0"
        return [f"SELECT * INTO {target_ref} FROM {source_ref}{where}"]

    def create_database(self, name, charset=None, collation=None):
        statement = f"CREATE DATABASE {self.quote_identifier(name)}"
        if collation:
            statement += f" COLLATE {collation}"
        return statement


MYSQL = MySQLDialect()
POSTGRES = PostgresDialect()
SQLITE = SQLiteDialect()
SQLSERVER = SQLServerDialect()
