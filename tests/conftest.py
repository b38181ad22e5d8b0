"""Pytest configuration and shared fixtures.

This module provides pytest configuration and shared fixtures for all tests
in the EasySQL test suite.
"""

import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from easysql.config.models import ConnectionProfile, CoreSettings, TunnelSettings


def configure_test_logging() -> None:
    """Send structlog events nowhere so tests stay quiet."""
    structlog.configure(
        processors=[structlog.testing.LogCapture()],
        logger_factory=structlog.testing.ReturnLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_test_logging()


@pytest.fixture(autouse=True)
def quiet_structlog():
    """Undo any structlog configuration a test applied."""
    yield
    configure_test_logging()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def mock_logger():
    """Mock structured logger for testing."""
    logger = MagicMock()
    logger.bind.return_value = logger
    return logger


@pytest.fixture
def settings() -> CoreSettings:
    """Settings with a small tunnel port range."""
    return CoreSettings(tunnel=TunnelSettings(port_range_start=41000, port_range_end=41009))


@pytest.fixture
def sqlite_profile(temp_dir: Path) -> ConnectionProfile:
    """Profile for a fresh SQLite file."""
    return ConnectionProfile(id="local", type="sqlite", file_path=str(temp_dir / "test.db"))


@pytest.fixture
def mysql_profile_data() -> dict:
    """Camel-cased profile as persisted by the profile store."""
    return {
        "id": "mysql-1",
        "type": "mysql",
        "name": "Staging",
        "host": "localhost",
        "port": 3306,
        "username": "root",
        "password": "secret",
        "database": "app",
    }


@pytest.fixture
def tunneled_profile_data(mysql_profile_data: dict) -> dict:
    """Profile routed through an SSH bastion."""
    return {
        **mysql_profile_data,
        "id": "mysql-ssh",
        "sshEnabled": True,
        "sshHost": "bastion.example.com",
        "sshPort": 2222,
        "sshUser": "ops",
        "sshPassword": "ssh-secret",
    }


@pytest.fixture
def fake_adapter_factory():
    """Build mock adapters that behave like connected handles."""

    def _make(alive: bool = True, connection_id: str = "c1"):
        adapter = MagicMock()
        adapter.connection_id = connection_id
        adapter.connect = AsyncMock()
        adapter.disconnect = AsyncMock()
        adapter.is_alive = AsyncMock(return_value=alive)
        adapter.get_connection_info.return_value = {"connection_id": connection_id}
        return adapter

    return _make


@pytest.fixture
def fake_tunnel():
    """Mock tunnel with an async close."""
    tunnel = MagicMock()
    tunnel.local_host = "127.0.0.1"
    tunnel.local_port = 41000
    tunnel.close = AsyncMock()
    return tunnel


# Pytest markers for different test categories
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (real servers)"
    )
    config.addinivalue_line(
        "markers", "database: marks tests touching an adapter or database"
    )


# Auto-mark tests based on their location
def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    tests_root = Path(__file__).parent
    for item in items:
        test_path = Path(str(item.fspath)).relative_to(tests_root)

        if test_path.parts[0] == "unit":
            item.add_marker(pytest.mark.unit)
        elif test_path.parts[0] == "integration":
            item.add_marker(pytest.mark.integration)

        if "database" in test_path.parts:
            item.add_marker(pytest.mark.database)
