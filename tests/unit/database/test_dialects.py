"""Tests for SQL dialect builders."""

import pytest

from easysql.core.exceptions import UnsupportedOperation, ValidationError
from easysql.database.dialects import MYSQL, POSTGRES, SQLITE, SQLSERVER
from easysql.database.models import (
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    TableOptions,
)


class TestQuoting:
    """Test identifier and literal quoting."""

    @pytest.mark.parametrize("dialect,expected", [
        (MYSQL, "`we``ird`"),
        (POSTGRES, '"we`ird"'),
        (SQLSERVER, "[we`ird]"),
    ])
    def test_quote_identifier(self, dialect, expected):
        assert dialect.quote_identifier("we`ird") == expected

    def test_embedded_closing_quote_doubled(self):
        assert POSTGRES.quote_identifier('a"b') == '"a""b"'
        assert SQLSERVER.quote_identifier("a]b") == "[a]]b]"

    def test_empty_identifier_rejected(self):
        with pytest.raises(ValidationError):
            MYSQL.quote_identifier("")

    def test_qualify_skips_empty_parts(self):
        assert SQLSERVER.qualify("app", None, "users") == "[app].[users]"
        assert MYSQL.qualify(None, "users") == "`users`"

    def test_literals(self):
        assert POSTGRES.quote_literal("O'Brien") == "'O''Brien'"
        assert MYSQL.quote_literal("a\\b") == "'a\\\\b'"
        assert SQLSERVER.quote_literal("name") == "N'name'"
        assert SQLITE.quote_literal(True) == "1"
        assert POSTGRES.quote_literal(None) == "NULL"
        assert POSTGRES.quote_literal(3) == "3"

    def test_defaults_keep_keywords_raw(self):
        assert MYSQL.default_literal("current_timestamp") == "current_timestamp"
        assert MYSQL.default_literal("0") == "0"
        assert MYSQL.default_literal("pending") == "'pending'"


class TestCreateTable:
    """Test CREATE TABLE generation."""

    @pytest.fixture
    def columns(self):
        return [
            ColumnDefinition(name="id", type="INT", primary_key=True, auto_increment=True, unsigned=True),
            ColumnDefinition(name="email", type="VARCHAR", length=255, nullable=False, comment="login"),
            ColumnDefinition(name="status", type="VARCHAR", length=20, default="active"),
        ]

    def test_mysql_inline_indexes_and_options(self, columns):
        statements = MYSQL.create_table(
            "`app`.`users`",
            columns,
            indexes=[IndexDefinition(name="uq_email", columns=["email"], kind="unique")],
            options=TableOptions(engine="InnoDB", charset="utf8mb4", comment="people"),
        )

        assert len(statements) == 1
        sql = statements[0]
        assert "`id` INT UNSIGNED NOT NULL AUTO_INCREMENT" in sql
        assert "`email` VARCHAR(255) NOT NULL COMMENT 'login'" in sql
        assert "`status` VARCHAR(20) NULL DEFAULT 'active'" in sql
        assert "PRIMARY KEY (`id`)" in sql
        assert "UNIQUE KEY `uq_email` (`email`)" in sql
        assert sql.endswith("ENGINE=InnoDB DEFAULT CHARSET=utf8mb4 COMMENT='people'")

    def test_column_order_preserved(self, columns):
        sql = POSTGRES.create_table('"users"', columns)[0]

        assert sql.index('"id"') < sql.index('"email"') < sql.index('"status"')

    def test_postgres_identity_and_comments(self, columns):
        statements = POSTGRES.create_table(
            '"public"."users"',
            columns,
            indexes=[IndexDefinition(name="ix_status", columns=["status"])],
            options=TableOptions(comment="people"),
        )

        assert '"id" INT NOT NULL GENERATED BY DEFAULT AS IDENTITY' in statements[0]
        assert "UNSIGNED" not in statements[0]
        assert statements[1] == 'CREATE INDEX "ix_status" ON "public"."users" ("status")'
        assert "COMMENT ON TABLE \"public\".\"users\" IS 'people'" in statements
        assert "COMMENT ON COLUMN \"public\".\"users\".\"email\" IS 'login'" in statements

    def test_sqlite_inline_autoincrement(self):
        statements = SQLITE.create_table('"users"', [
            ColumnDefinition(name="id", type="INT", primary_key=True, auto_increment=True),
            ColumnDefinition(name="name", type="TEXT"),
        ])

        assert '"id" INTEGER NOT NULL PRIMARY KEY AUTOINCREMENT' in statements[0]
        assert "PRIMARY KEY (" not in statements[0]

    def test_sqlite_composite_key_drops_autoincrement(self):
        sql = SQLITE.create_table('"t"', [
            ColumnDefinition(name="a", type="INTEGER", primary_key=True, auto_increment=True),
            ColumnDefinition(name="b", type="INTEGER", primary_key=True),
        ])[0]

        assert "AUTOINCREMENT" not in sql
        assert 'PRIMARY KEY ("a", "b")' in sql

    def test_sqlserver_identity(self, columns):
        sql = SQLSERVER.create_table("[dbo].[users]", columns)[0]

        assert "[id] INT NOT NULL IDENTITY(1,1)" in sql
        assert "[status] VARCHAR(20) NULL DEFAULT N'active'" in sql

    def test_foreign_keys(self):
        fk = ForeignKeyDefinition(
            name="fk_user", columns=["user_id"], referenced_table="users",
            referenced_columns=["id"], on_delete="CASCADE",
        )

        sql = POSTGRES.create_table('"orders"', [ColumnDefinition(name="user_id", type="INT")],
                                    foreign_keys=[fk])[0]

        assert 'CONSTRAINT "fk_user" FOREIGN KEY ("user_id") REFERENCES "users" ("id") ON DELETE CASCADE' in sql

    def test_fulltext_unsupported_outside_mysql(self):
        with pytest.raises(UnsupportedOperation):
            POSTGRES.create_index('"t"', IndexDefinition(name="ft", columns=["body"], kind="fulltext"))

    def test_empty_columns_rejected(self):
        with pytest.raises(ValidationError):
            MYSQL.create_table("`t`", [])

    def test_decimal_precision(self):
        column = ColumnDefinition(name="price", type="DECIMAL", length=10, scale=2)

        assert MYSQL.column_type(column) == "DECIMAL(10,2)"


class TestTableStatements:
    """Test table-level DDL."""

    def test_truncate(self):
        assert MYSQL.truncate_table("`t`") == "TRUNCATE TABLE `t`"
        assert SQLITE.truncate_table('"t"') == 'DELETE FROM "t"'

    def test_rename(self):
        assert MYSQL.rename_table("`app`.`a`", "b", new_ref="`app`.`b`") == "RENAME TABLE `app`.`a` TO `app`.`b`"
        assert POSTGRES.rename_table('"public"."a"', "b") == 'ALTER TABLE "public"."a" RENAME TO "b"'
        assert SQLSERVER.rename_table("[dbo].[a]", "b", object_name="dbo.a") == "EXEC sp_rename N'dbo.a', N'b'"

    def test_duplicate(self):
        assert MYSQL.duplicate_table("`a`", "`b`", True) == [
            "CREATE TABLE `b` LIKE `a`",
            "INSERT INTO `b` SELECT * FROM `a`",
        ]
        assert POSTGRES.duplicate_table('"a"', '"b"', False) == [
            'CREATE TABLE "b" AS SELECT * FROM "a" WHERE 1 = 0'
        ]
        assert SQLSERVER.duplicate_table("[a]", "[b]", True) == ["SELECT * INTO [b] FROM [a]"]

    def test_add_column_after(self):
        column = ColumnDefinition(name="age", type="INT")

        assert MYSQL.add_column("`t`", column, after="name") == ["ALTER TABLE `t` ADD COLUMN `age` INT NULL AFTER `name`"]
        assert POSTGRES.add_column('"t"', column, after="name") == ['ALTER TABLE "t" ADD COLUMN "age" INT NULL']
        assert SQLSERVER.add_column("[t]", column) == ["ALTER TABLE [t] ADD [age] INT NULL"]

    def test_modify_column(self):
        column = ColumnDefinition(name="full_name", type="VARCHAR", length=200, nullable=False)

        assert MYSQL.modify_column("`t`", "name", column) == [
            "ALTER TABLE `t` CHANGE COLUMN `name` `full_name` VARCHAR(200) NOT NULL"
        ]
        pg = POSTGRES.modify_column('"t"', "name", column)
        assert pg[0] == 'ALTER TABLE "t" RENAME COLUMN "name" TO "full_name"'
        assert 'ALTER TABLE "t" ALTER COLUMN "full_name" SET NOT NULL' in pg
        mssql = SQLSERVER.modify_column("dbo.t", "name", column)
        assert mssql[0] == "EXEC sp_rename N'dbo.t.[name]', N'full_name', 'COLUMN'"
        assert mssql[1] == "ALTER TABLE dbo.t ALTER COLUMN [full_name] VARCHAR(200) NOT NULL"

    def test_sqlite_unsupported(self):
        with pytest.raises(UnsupportedOperation):
            SQLITE.modify_column('"t"', "a", ColumnDefinition(name="a", type="TEXT"))
        with pytest.raises(UnsupportedOperation):
            SQLITE.create_database("other")
        with pytest.raises(UnsupportedOperation):
            SQLITE.drop_database("other")

    def test_create_database_options(self):
        assert MYSQL.create_database("app", "utf8mb4", "utf8mb4_bin") == (
            "CREATE DATABASE `app` CHARACTER SET utf8mb4 COLLATE utf8mb4_bin"
        )
        assert POSTGRES.create_database("app", "UTF8") == "CREATE DATABASE \"app\" ENCODING 'UTF8'"


class TestRowStatements:
    """Test paging and row DML."""

    def test_paging(self):
        assert MYSQL.select_page("`t`", 50, 100) == "SELECT * FROM `t` LIMIT 50 OFFSET 100"
        assert SQLSERVER.select_page("[t]", 50, 100) == (
            "SELECT * FROM [t] ORDER BY (SELECT NULL) OFFSET 100 ROWS FETCH NEXT 50 ROWS ONLY"
        )

    def test_mysql_insert_binds(self):
        params = []

        sql = MYSQL.insert("`t`", {"name": "a", "age": 3}, params)

        assert sql == "INSERT INTO `t` (`name`, `age`) VALUES (%s, %s)"
        assert params == ["a", 3]

    def test_postgres_inlines_literals(self):
        params = []

        sql = POSTGRES.update('"t"', {"name": "O'Hara"}, "id", 7, params)

        assert sql == "UPDATE \"t\" SET \"name\" = 'O''Hara' WHERE \"id\" = 7"
        assert params == []

    def test_sqlite_delete_binds(self):
        params = []

        sql = SQLITE.delete('"t"', "id", 7, params)

        assert sql == 'DELETE FROM "t" WHERE "id" = ?'
        assert params == [7]

    def test_empty_insert_and_update_rejected(self):
        with pytest.raises(ValidationError):
            MYSQL.insert("`t`", {}, [])
        with pytest.raises(ValidationError):
            MYSQL.update("`t`", {}, "id", 1, [])
