"""Normalized data models shared by every adapter."""

import dataclasses
import datetime as dt
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId

from ..core.exceptions import EasySQLException, ValidationError, create_error_from_exception

INDEX_KINDS = ("unique", "normal", "fulltext")
REFERENTIAL_ACTIONS = ("CASCADE", "SET NULL", "SET DEFAULT", "RESTRICT", "NO ACTION")
COLUMN_KEY_ALIASES = {
    "primaryKey": "primary_key",
    "isPrimaryKey": "primary_key",
    "autoIncrement": "auto_increment",
    "defaultValue": "default",
    "isUnsigned": "unsigned",
}


def normalize_value(value: Any) -> Any:
    """Convert a driver value into a JSON-friendly Python value.

    Bytes that decode as UTF-8 become text, other bytes become hex; decimals,
    identifiers and temporal values become strings.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, memoryview):
        value = value.tobytes()
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value).hex()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    if isinstance(value, dt.timedelta):
        return str(value)
    if isinstance(value, (uuid.UUID, ObjectId)):
        return str(value)
    if isinstance(value, dict):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [normalize_value(v) for v in value]
    return str(value)


def normalize_row(row: Sequence[Any]) -> List[Any]:
    return [normalize_value(v) for v in row]


@dataclass
class QueryResult:
    """Result of a free-form statement.

    Every row holds exactly ``len(columns)`` values, positionally aligned.
    A failed statement carries ``error`` and ``error_type`` and no rows.
    """

    columns: List[str] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)
    affected_rows: Optional[int] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    execution_time: float = 0.0

    def __post_init__(self) -> None:
        self.rows = [normalize_row(row) for row in self.rows]
        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValidationError(
                    f"Row {index} has {len(row)} values for {width} columns",
                    context={"row": index, "columns": width},
                )

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_exception(cls, exc: Exception, execution_time: float = 0.0) -> "QueryResult":
        message = exc.message if isinstance(exc, EasySQLException) else (str(exc) or type(exc).__name__)
        return cls(error=message, error_type=type(exc).__name__, execution_time=execution_time)

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class TableInfo:
    """A table, view or collection with its (possibly estimated) row count."""

    name: str
    rows: int = 0
    is_view: bool = False


@dataclass
class ColumnInfo:
    name: str
    type: str
    nullable: bool = True
    key: Optional[str] = None
    is_primary_key: bool = False
    comment: Optional[str] = None

    def __post_init__(self) -> None:
        if self.key == "PRI":
            self.is_primary_key = True
        elif self.is_primary_key and self.key is None:
            self.key = "PRI"
        if self.comment == "":
            self.comment = None


@dataclass
class ColumnDetail(ColumnInfo):
    """Column with the attributes needed by the table designer."""

    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    default: Optional[str] = None
    auto_increment: bool = False
    unsigned: bool = False
    is_virtual: bool = False
    generation_expression: Optional[str] = None

    def summary(self) -> ColumnInfo:
        return ColumnInfo(
            name=self.name,
            type=self.type,
            nullable=self.nullable,
            key=self.key,
            is_primary_key=self.is_primary_key,
            comment=self.comment,
        )


@dataclass
class IndexInfo:
    name: str
    columns: List[str]
    kind: str = "normal"
    method: Optional[str] = None
    primary: bool = False


@dataclass
class ForeignKeyInfo:
    name: str
    columns: List[str]
    referenced_table: str
    referenced_columns: List[str]
    on_delete: Optional[str] = None
    on_update: Optional[str] = None


@dataclass
class TableOptions:
    """Table-level options; also used as create-table input."""

    engine: Optional[str] = None
    charset: Optional[str] = None
    collation: Optional[str] = None
    comment: Optional[str] = None
    auto_increment: Optional[int] = None
    row_format: Optional[str] = None


@dataclass
class TableDetails:
    columns: List[ColumnDetail] = field(default_factory=list)
    indexes: List[IndexInfo] = field(default_factory=list)
    foreign_keys: List[ForeignKeyInfo] = field(default_factory=list)
    options: TableOptions = field(default_factory=TableOptions)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class TableData:
    """One page of table rows."""

    columns: List[ColumnInfo]
    rows: List[List[Any]]
    total: int
    page: int
    page_size: int

    def __post_init__(self) -> None:
        self.rows = [normalize_row(row) for row in self.rows]

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class ColumnDefinition:
    """Column as authored in the table designer."""

    name: str
    type: str
    length: Optional[int] = None
    scale: Optional[int] = None
    nullable: bool = True
    primary_key: bool = False
    auto_increment: bool = False
    unsigned: bool = False
    default: Optional[Any] = None
    comment: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Column name cannot be empty")
        if not self.type or not self.type.strip():
            raise ValidationError(f"Column {self.name} has no type", context={"column": self.name})
        if self.primary_key:
            self.nullable = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColumnDefinition":
        """Accept snake_case fields or the designer's camelCase keys.

        An empty ``defaultValue`` means no default. Unknown keys raise
        ``ValidationError``.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        payload = {COLUMN_KEY_ALIASES.get(k, k): v for k, v in data.items()}
        unknown = sorted(set(payload) - known)
        if unknown:
            raise ValidationError(
                f"Unknown column field(s): {', '.join(unknown)}",
                context={"column": data.get("name"), "fields": unknown},
            )
        if payload.get("default") == "":
            payload["default"] = None
        return cls(**payload)


@dataclass
class IndexDefinition:
    name: str
    columns: List[str]
    kind: str = "normal"
    method: Optional[str] = None

    def __post_init__(self) -> None:
        self.kind = self.kind.lower()
        if self.kind not in INDEX_KINDS:
            raise ValidationError(
                f"Unknown index kind: {self.kind}",
                context={"index": self.name, "allowed": list(INDEX_KINDS)},
            )
        if not self.columns:
            raise ValidationError(f"Index {self.name} has no columns", context={"index": self.name})


@dataclass
class ForeignKeyDefinition:
    name: str
    columns: List[str]
    referenced_table: str
    referenced_columns: List[str]
    on_delete: Optional[str] = None
    on_update: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.columns or len(self.columns) != len(self.referenced_columns):
            raise ValidationError(
                f"Foreign key {self.name} must map each column to one referenced column",
                context={"foreign_key": self.name},
            )
        for attr in ("on_delete", "on_update"):
            action = getattr(self, attr)
            if action is None:
                continue
            action = action.upper()
            if action not in REFERENTIAL_ACTIONS:
                raise ValidationError(
                    f"Unknown referential action: {action}",
                    context={"foreign_key": self.name, "allowed": list(REFERENTIAL_ACTIONS)},
                )
            setattr(self, attr, action)


@dataclass(frozen=True)
class PrimaryKey:
    """Identifies one row for update or delete."""

    column: str
    value: Any


@dataclass
class OperationResult:
    """Result envelope returned by the service for every operation."""

    success: bool
    message: str = ""
    data: Any = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, message: str = "", data: Any = None) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, exc: Exception) -> "OperationResult":
        """Builtin errors are reported under their EasySQL equivalent."""
        error = create_error_from_exception(exc)
        return cls(success=False, message=error.message, error_type=type(error).__name__)

    def to_dict(self) -> Dict[str, Any]:
        data = self.data
        if dataclasses.is_dataclass(data) and not isinstance(data, type):
            data = dataclasses.asdict(data)
        elif isinstance(data, list):
            data = [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        return {
            "success": self.success,
            "message": self.message,
            "data": data,
            "error_type": self.error_type,
        }
