"""Unit tests for the EasySQL exception hierarchy."""

import pytest

from easysql.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConnectionError,
    ConnectionLost,
    DecryptionFailed,
    EasySQLException,
    ErrorCodes,
    StatementError,
    TunnelError,
    UnsupportedOperation,
    ValidationError,
    create_error_from_exception,
)


class TestEasySQLException:
    """Test base EasySQL exception class."""

    def test_basic_exception_creation(self):
        """Test basic exception creation with message only."""
        exc = EasySQLException("Test error message")

        assert str(exc) == "EasySQLException: Test error message"
        assert exc.message == "Test error message"
        assert exc.code == "EasySQLException"
        assert exc.context == {}
        assert exc.cause is None

    def test_exception_with_code_and_context(self):
        """Test exception creation with code and context."""
        exc = EasySQLException(
            "Lost",
            code=ErrorCodes.CONNECTION_LOST,
            context={"connection_id": "c1"},
        )

        assert str(exc) == "CONNECTION_LOST: Lost"
        assert exc.context["connection_id"] == "c1"

    def test_to_dict(self):
        """Test serialization keeps the cause as text."""
        cause = OSError("reset by peer")
        exc = ConnectionLost("Connection lost", code=ErrorCodes.CONNECTION_LOST, cause=cause)

        data = exc.to_dict()

        assert data == {
            "error_type": "ConnectionLost",
            "message": "Connection lost",
            "code": "CONNECTION_LOST",
            "context": {},
            "cause": "reset by peer",
        }

    def test_repr_contains_fields(self):
        exc = StatementError("syntax error", code=ErrorCodes.QUERY_EXECUTION_FAILED)

        assert "StatementError" in repr(exc)
        assert "QUERY_EXECUTION_FAILED" in repr(exc)


class TestHierarchy:
    """Test exception inheritance."""

    @pytest.mark.parametrize("exc_class,parent", [
        (ValidationError, ConfigurationError),
        (TunnelError, ConnectionError),
        (AuthenticationError, ConnectionError),
        (ConnectionLost, ConnectionError),
        (UnsupportedOperation, EasySQLException),
        (StatementError, EasySQLException),
        (DecryptionFailed, EasySQLException),
    ])
    def test_subclass_relationships(self, exc_class, parent):
        assert issubclass(exc_class, parent)
        assert issubclass(exc_class, EasySQLException)

    def test_connection_error_is_not_builtin(self):
        """The package ConnectionError does not catch builtin connection errors."""
        assert not issubclass(ConnectionRefusedError, ConnectionError)


class TestCreateErrorFromException:
    """Test mapping of builtin exceptions."""

    @pytest.mark.parametrize("source,expected", [
        (ConnectionRefusedError("refused"), ConnectionError),
        (ConnectionResetError("reset"), ConnectionLost),
        (BrokenPipeError("pipe"), ConnectionLost),
        (TimeoutError("slow"), ConnectionError),
        (FileNotFoundError("missing"), ConfigurationError),
        (NotImplementedError("nope"), UnsupportedOperation),
        (ValueError("bad"), ValidationError),
        (RuntimeError("other"), EasySQLException),
    ])
    def test_mapping(self, source, expected):
        error = create_error_from_exception(source, code="X")

        assert type(error) is expected
        assert error.cause is source
        assert error.code == "X"

    def test_easysql_exception_passes_through(self):
        original = StatementError("bad statement")

        assert create_error_from_exception(original) is original

    def test_message_override_and_context(self):
        error = create_error_from_exception(
            ConnectionRefusedError("refused"),
            message="Cannot reach MySQL",
            context={"port": 3306},
        )

        assert error.message == "Cannot reach MySQL"
        assert error.context == {"port": 3306}

    def test_empty_message_falls_back_to_type_name(self):
        error = create_error_from_exception(RuntimeError())

        assert error.message == "RuntimeError"
