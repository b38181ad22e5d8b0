"""Small helpers shared by the config models, adapters and the service."""

import re
import time
from contextlib import contextmanager
from typing import Any, Generator, Optional, Union

_WHITESPACE = re.compile(r"\s+")


class ValidationUtils:
    """Checks applied to profile fields before any driver is touched."""

    CONNECTION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:\-]+$")

    @classmethod
    def validate_connection_id(cls, connection_id: str) -> bool:
        """True for uuids and slugs such as ``prod.db:primary``."""
        return bool(connection_id) and cls.CONNECTION_ID_PATTERN.match(connection_id) is not None

    @staticmethod
    def validate_port(port: Union[int, str]) -> bool:
        try:
            return 0 < int(port) < 65536
        except (TypeError, ValueError):
            return False


class StringUtils:

    @staticmethod
    def truncate_string(text: str, max_length: int, *, suffix: str = "...") -> str:
        """Cut ``text`` to ``max_length`` characters, suffix included.

        Example:
            >>> StringUtils.truncate_string("SELECT * FROM users", 10)
            'SELECT ...'
        """
        if len(text) <= max_length:
            return text
        keep = max_length - len(suffix)
        return text[:keep] + suffix if keep > 0 else suffix[:max_length]

    @classmethod
    def compact_statement(cls, statement: str, max_length: int = 200) -> str:
        """Single-line form of a statement for error context and logs."""
        return cls.truncate_string(_WHITESPACE.sub(" ", statement).strip(), max_length)


class TimerContext:
    """Wall-clock timer; ``duration`` reads the running time until exit."""

    def __init__(self) -> None:
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def __enter__(self) -> "TimerContext":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()

    @property
    def duration(self) -> Optional[float]:
        if self.start_time is None:
            return None
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time


@contextmanager
def measure_time() -> Generator[TimerContext, None, None]:
    """Time the block; the timer is usable after the block exits.

    Example:
        >>> with measure_time() as timer:
        ...     rows = await cursor.fetchall()
        >>> QueryResult(columns, rows, execution_time=timer.duration)
    """
    with TimerContext() as timer:
        yield timer
