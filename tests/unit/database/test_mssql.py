"""Tests for the SQL Server adapter helpers."""

from unittest.mock import AsyncMock, patch

import pytest

pyodbc = pytest.importorskip("pyodbc", exc_type=ImportError)
pytest.importorskip("aioodbc", exc_type=ImportError)

from easysql.config.models import ConnectionProfile  # noqa: E402
from easysql.core.exceptions import AuthenticationError, ConnectionError  # noqa: E402
from easysql.database.connectors.mssql import SQLServerAdapter, build_dsn, sqlstate  # noqa: E402


@pytest.fixture
def profile():
    return ConnectionProfile(id="ms", type="mssql", host="sql.internal", username="sa", password="pw")


class TestBuildDsn:
    """Test ODBC connection string building."""

    def test_defaults(self):
        dsn = build_dsn("sql.internal", 1433, "sa", "pw", "master", {})

        assert dsn == (
            "DRIVER={ODBC Driver 18 for SQL Server};SERVER=sql.internal,1433;DATABASE=master;"
            "UID=sa;PWD=pw;TrustServerCertificate=yes;Encrypt=optional"
        )

    def test_special_characters_are_braced(self):
        dsn = build_dsn("h", 1433, "sa", "p;w}d", "app", {})

        assert "PWD={p;w}}d}" in dsn

    def test_options(self):
        dsn = build_dsn(
            "h", 1433, "sa", "pw", "app",
            {"driver": "ODBC Driver 17 for SQL Server", "trust_server_certificate": False, "encrypt": "yes"},
        )

        assert dsn.startswith("DRIVER={ODBC Driver 17 for SQL Server};")
        assert dsn.endswith("TrustServerCertificate=no;Encrypt=yes")


class TestSQLServerAdapter:
    """Test SQL Server adapter behaviour."""

    def test_sqlstate(self):
        assert sqlstate(pyodbc.Error("28000", "Login failed")) == "28000"
        assert sqlstate(RuntimeError()) == ""

    @pytest.mark.parametrize("error,expected", [
        (pyodbc.OperationalError("HYT00", "Timeout expired"), True),
        (pyodbc.Error("08S01", "Communication link failure"), True),
        (pyodbc.ProgrammingError("42S02", "Invalid object name"), False),
        (BrokenPipeError(), True),
    ])
    def test_is_transport_error(self, profile, error, expected):
        assert SQLServerAdapter(profile).is_transport_error(error) is expected

    def test_defaults(self, profile):
        adapter = SQLServerAdapter(profile)

        assert adapter.default_database == "master"
        assert adapter.table_ref("app", "users") == "[dbo].[users]"
        assert adapter.get_connection_info()["port"] == 1433

    @pytest.mark.asyncio
    async def test_login_failure(self, profile):
        error = pyodbc.InterfaceError("28000", "Login failed for user 'sa'")

        with patch("easysql.database.connectors.mssql.aioodbc.create_pool", AsyncMock(side_effect=error)):
            with pytest.raises(AuthenticationError) as exc_info:
                await SQLServerAdapter(profile).connect()

        assert exc_info.value.code == "AUTH_FAILED"

    @pytest.mark.asyncio
    async def test_unreachable(self, profile):
        error = pyodbc.OperationalError("HYT00", "Login timeout expired")

        with patch("easysql.database.connectors.mssql.aioodbc.create_pool", AsyncMock(side_effect=error)):
            with pytest.raises(ConnectionError) as exc_info:
                await SQLServerAdapter(profile).connect()

        assert exc_info.value.code == "CONNECTION_REFUSED"
