"""Tests for the SQLite adapter against real database files."""

import pytest

from easysql.config.models import ConnectionProfile
from easysql.core.exceptions import (
    ConnectionError,
    ConnectionLost,
    StatementError,
    UnsupportedOperation,
    ValidationError,
)
from easysql.database.connectors.sqlite import SQLiteAdapter, parse_declared_type
from easysql.database.models import (
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    PrimaryKey,
)

USERS_COLUMNS = [
    ColumnDefinition(name="id", type="INTEGER", primary_key=True, auto_increment=True),
    ColumnDefinition(name="name", type="VARCHAR", length=100, nullable=False),
    ColumnDefinition(name="email", type="TEXT"),
]


@pytest.fixture
async def adapter(sqlite_profile, settings):
    adapter = SQLiteAdapter(sqlite_profile, settings)
    await adapter.connect()
    yield adapter
    await adapter.disconnect()


@pytest.fixture
async def users(adapter):
    await adapter.create_table(
        "main",
        "users",
        USERS_COLUMNS,
        indexes=[IndexDefinition(name="idx_users_email", columns=["email"], kind="unique")],
    )
    return adapter


class TestParseDeclaredType:
    """Test declared type parsing."""

    @pytest.mark.parametrize("declared,expected", [
        ("VARCHAR(100)", ("VARCHAR", 100, None)),
        ("DECIMAL(10, 2)", ("DECIMAL", 10, 2)),
        ("INTEGER", ("INTEGER", None, None)),
        ("", ("", None, None)),
    ])
    def test_parse(self, declared, expected):
        assert parse_declared_type(declared) == expected


class TestLifecycle:
    """Test connect and disconnect."""

    @pytest.mark.asyncio
    async def test_connect_creates_file(self, sqlite_profile, settings, temp_dir):
        adapter = SQLiteAdapter(sqlite_profile, settings)

        await adapter.connect()
        try:
            assert (temp_dir / "test.db").exists()
            assert await adapter.is_alive()
            assert adapter.get_connection_info()["database_path"] == str(temp_dir / "test.db")
        finally:
            await adapter.disconnect()

        assert not await adapter.is_alive()

    @pytest.mark.asyncio
    async def test_missing_directory(self, temp_dir):
        profile = ConnectionProfile(id="x", type="sqlite", file_path=str(temp_dir / "missing" / "x.db"))
        adapter = SQLiteAdapter(profile)

        with pytest.raises(ConnectionError) as exc_info:
            await adapter.connect()

        assert exc_info.value.code == "CONNECTION_REFUSED"

    @pytest.mark.asyncio
    async def test_operations_require_connection(self, sqlite_profile):
        adapter = SQLiteAdapter(sqlite_profile)

        with pytest.raises(ConnectionLost) as exc_info:
            await adapter.list_tables("main")

        assert exc_info.value.code == "NOT_CONNECTED"

    @pytest.mark.asyncio
    async def test_list_databases(self, adapter):
        assert await adapter.list_databases() == ["main"]


class TestSchema:
    """Test DDL followed by introspection."""

    @pytest.mark.asyncio
    async def test_columns_after_create(self, users):
        columns = await users.list_columns_detailed("main", "users")

        assert [c.name for c in columns] == ["id", "name", "email"]
        id_column, name_column, email_column = columns
        assert id_column.key == "PRI"
        assert id_column.is_primary_key
        assert id_column.auto_increment
        assert not id_column.nullable
        assert name_column.length == 100
        assert not name_column.nullable
        assert email_column.nullable

    @pytest.mark.asyncio
    async def test_column_summary(self, users):
        columns = await users.list_columns("main", "users")

        assert [(c.name, c.is_primary_key) for c in columns] == [("id", True), ("name", False), ("email", False)]

    @pytest.mark.asyncio
    async def test_indexes_after_create(self, users):
        indexes = await users.list_indexes("main", "users")

        assert len(indexes) == 1
        assert indexes[0].name == "idx_users_email"
        assert indexes[0].columns == ["email"]
        assert indexes[0].kind == "unique"

    @pytest.mark.asyncio
    async def test_foreign_keys(self, users):
        await users.create_table(
            "main",
            "orders",
            [
                ColumnDefinition(name="id", type="INTEGER", primary_key=True),
                ColumnDefinition(name="user_id", type="INTEGER"),
            ],
            foreign_keys=[ForeignKeyDefinition(
                name="fk_orders_user", columns=["user_id"], referenced_table="users",
                referenced_columns=["id"], on_delete="CASCADE",
            )],
        )

        foreign_keys = await users.list_foreign_keys("main", "orders")

        assert len(foreign_keys) == 1
        assert foreign_keys[0].columns == ["user_id"]
        assert foreign_keys[0].referenced_table == "users"
        assert foreign_keys[0].referenced_columns == ["id"]
        assert foreign_keys[0].on_delete == "CASCADE"

    @pytest.mark.asyncio
    async def test_table_info(self, users):
        details = await users.get_table_info("main", "users")

        assert len(details.columns) == 3
        assert details.foreign_keys == []
        assert details.options.engine == "sqlite"

    @pytest.mark.asyncio
    async def test_list_tables_with_views(self, users):
        await users.insert_row("main", "users", {"name": "ada"})
        await users.query('CREATE VIEW "active_users" AS SELECT * FROM "users"')

        tables = await users.list_tables("main")

        assert [(t.name, t.rows, t.is_view) for t in tables] == [
            ("users", 1, False),
            ("active_users", 1, True),
        ]

    @pytest.mark.asyncio
    async def test_add_and_drop_column(self, users):
        await users.add_column("main", "users", ColumnDefinition(name="age", type="INTEGER", default="0"))
        assert [c.name for c in await users.list_columns("main", "users")][-1] == "age"

        await users.drop_column("main", "users", "age")
        assert "age" not in [c.name for c in await users.list_columns("main", "users")]

    @pytest.mark.asyncio
    async def test_rename_duplicate_truncate_drop(self, users):
        await users.insert_row("main", "users", {"name": "ada"})

        await users.rename_table("main", "users", "people")
        await users.duplicate_table("main", "people", "people_copy", with_data=True)
        await users.duplicate_table("main", "people", "people_empty", with_data=False)
        await users.truncate_table("main", "people")

        rows = {t.name: t.rows for t in await users.list_tables("main")}
        assert rows == {"people": 0, "people_copy": 1, "people_empty": 0}

        await users.drop_table("main", "people_empty")
        assert "people_empty" not in [t.name for t in await users.list_tables("main")]

    @pytest.mark.asyncio
    async def test_unsupported_ddl(self, users):
        with pytest.raises(UnsupportedOperation):
            await users.modify_column("main", "users", "name", ColumnDefinition(name="name", type="TEXT"))
        with pytest.raises(UnsupportedOperation):
            await users.create_database("other")

    @pytest.mark.asyncio
    async def test_failed_ddl_is_statement_error(self, users):
        with pytest.raises(StatementError) as exc_info:
            await users.create_table("main", "users", USERS_COLUMNS)

        assert exc_info.value.code == "DDL_FAILED"
        assert "already exists" in exc_info.value.message


class TestRows:
    """Test paging and row edits."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,expected", [(1, 10), (2, 10), (3, 5), (4, 0)])
    async def test_pagination(self, users, page, expected):
        for i in range(25):
            await users.insert_row("main", "users", {"name": f"user{i}"})

        data = await users.get_table_data("main", "users", page=page, page_size=10)

        assert data.total == 25
        assert len(data.rows) == expected
        assert data.page == page
        assert [c.name for c in data.columns] == ["id", "name", "email"]

    @pytest.mark.asyncio
    async def test_page_rows_follow_insertion_order(self, users):
        for i in range(5):
            await users.insert_row("main", "users", {"name": f"user{i}"})

        data = await users.get_table_data("main", "users", page=2, page_size=2)

        assert [row[1] for row in data.rows] == ["user2", "user3"]

    @pytest.mark.asyncio
    async def test_invalid_page(self, users):
        with pytest.raises(ValidationError):
            await users.get_table_data("main", "users", page=0)
        with pytest.raises(ValidationError):
            await users.get_table_data("main", "users", page_size=0)

    @pytest.mark.asyncio
    async def test_missing_table(self, adapter):
        with pytest.raises(StatementError):
            await adapter.get_table_data("main", "nope")

    @pytest.mark.asyncio
    async def test_update_and_delete(self, users):
        assert await users.insert_row("main", "users", {"name": "ada", "email": "a@x"}) == 1

        assert await users.update_row("main", "users", PrimaryKey("id", 1), {"email": "ada@x"}) == 1
        assert await users.update_row("main", "users", PrimaryKey("id", 99), {"email": "x"}) == 0
        data = await users.get_table_data("main", "users")
        assert data.rows == [[1, "ada", "ada@x"]]

        assert await users.delete_row("main", "users", PrimaryKey("id", 1)) == 1
        assert (await users.get_table_data("main", "users")).total == 0

    @pytest.mark.asyncio
    async def test_constraint_violation(self, users):
        await users.insert_row("main", "users", {"name": "a", "email": "same"})

        with pytest.raises(StatementError) as exc_info:
            await users.insert_row("main", "users", {"name": "b", "email": "same"})

        assert "UNIQUE" in exc_info.value.message


class TestQuery:
    """Test free-form statements."""

    @pytest.mark.asyncio
    async def test_select(self, users):
        await users.insert_row("main", "users", {"name": "ada"})

        result = await users.query("SELECT id, name FROM users")

        assert result.columns == ["id", "name"]
        assert result.rows == [[1, "ada"]]
        assert result.affected_rows is None
        assert result.execution_time >= 0

    @pytest.mark.asyncio
    async def test_dml_reports_affected_rows(self, users):
        result = await users.query("INSERT INTO users (name) VALUES ('a')")

        assert result.columns == []
        assert result.rows == []
        assert result.affected_rows == 1

    @pytest.mark.asyncio
    async def test_multiple_statements(self, users):
        result = await users.query("INSERT INTO users (name) VALUES ('a'); INSERT INTO users (name) VALUES ('b');")

        assert result.rows == []
        assert (await users.get_table_data("main", "users")).total == 2

    @pytest.mark.asyncio
    async def test_syntax_error(self, adapter):
        with pytest.raises(StatementError) as exc_info:
            await adapter.query("SELEC 1")

        assert exc_info.value.code == "QUERY_EXECUTION_FAILED"
        assert exc_info.value.context["statement"] == "SELEC 1"
