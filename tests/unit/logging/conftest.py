"""Fixtures for the logging tests."""

import logging

import pytest

from easysql.config.models import LoggingConfig
from easysql.logging.factory import LoggerFactory, get_factory


@pytest.fixture
def temp_log_file(tmp_path):
    return tmp_path / "easysql.log"


@pytest.fixture
def sample_logging_config(temp_log_file):
    """File-only JSON logging with a 1MB rotation size."""
    return LoggingConfig(
        level="INFO",
        format="json",
        file_path=temp_log_file,
        console_output=False,
        max_file_size=1024 * 1024,
        backup_count=3,
    )


@pytest.fixture
def logger_factory():
    factory = LoggerFactory()
    yield factory
    factory.shutdown()


@pytest.fixture(autouse=True)
def reset_global_factory():
    """Tests may configure the global factory; undo it and any root handlers."""
    yield
    get_factory().shutdown()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
