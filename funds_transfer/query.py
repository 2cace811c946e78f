"""
Query Predicate Module

Composable criteria for dynamic filtered queries. A criterion can test an
in-memory record and render itself as a parameterised SQL fragment, so the
same search runs unchanged against every storage backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Generic, List, Tuple, TypeVar
import math
import re


_FIELD_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")


def format_timestamp(value: datetime) -> str:
    """
    Serialize a datetime as a fixed-width UTC ISO string.

    Naive values are taken to be UTC. The fixed width keeps lexicographic
    order identical to chronological order.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime"""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class FieldType(Enum):
    """How a stored field is compared"""
    TEXT = "text"
    NUMERIC = "numeric"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class Field:
    """A named field inside a stored document"""
    name: str
    field_type: FieldType = FieldType.TEXT

    def __post_init__(self):
        if not _FIELD_NAME.match(self.name):
            raise ValueError(f"Invalid field name: {self.name!r}")

    def coerce(self, value: Any) -> Any:
        """Convert a raw value into its comparable Python form"""
        if value is None:
            return None
        if self.field_type == FieldType.NUMERIC:
            return Decimal(str(value))
        if self.field_type == FieldType.TIMESTAMP:
            return parse_timestamp(value)
        return str(value)

    def extract(self, record: Dict[str, Any]) -> Any:
        return self.coerce(record.get(self.name))


class SQLDialect(ABC):
    """Renders fields and bound values for one SQL backend"""

    placeholder = "?"

    @abstractmethod
    def field_expr(self, field: Field) -> str:
        """SQL expression that reads the field out of the JSON document"""

    @abstractmethod
    def bind(self, field: Field, value: Any) -> Any:
        """Convert a criterion value into a driver parameter"""


class SQLiteDialect(SQLDialect):
    """SQLite JSON1 dialect (documents stored as TEXT)"""

    placeholder = "?"

    def field_expr(self, field: Field) -> str:
        expr = f"json_extract(data, '$.{field.name}')"
        if field.field_type == FieldType.NUMERIC:
            return f"CAST({expr} AS NUMERIC)"
        return expr

    def bind(self, field: Field, value: Any) -> Any:
        value = field.coerce(value)
        if field.field_type == FieldType.NUMERIC:
            # sqlite3 has no Decimal adapter
            return float(value)
        if field.field_type == FieldType.TIMESTAMP:
            return format_timestamp(value)
        return value


class PostgreSQLDialect(SQLDialect):
    """PostgreSQL JSONB dialect"""

    placeholder = "%s"

    def field_expr(self, field: Field) -> str:
        expr = f"(data ->> '{field.name}')"
        if field.field_type == FieldType.NUMERIC:
            return f"{expr}::numeric"
        if field.field_type == FieldType.TIMESTAMP:
            return f"{expr}::timestamptz"
        return expr

    def bind(self, field: Field, value: Any) -> Any:
        return field.coerce(value)


class Criterion(ABC):
    """A composable predicate over stored documents"""

    @abstractmethod
    def matches(self, record: Dict[str, Any]) -> bool:
        """Evaluate against an in-memory record"""

    @abstractmethod
    def to_sql(self, dialect: SQLDialect) -> Tuple[str, List[Any]]:
        """Render as a WHERE fragment plus its parameters"""

    def __and__(self, other: "Criterion") -> "Criterion":
        return AllOf(self, other)

    def __or__(self, other: "Criterion") -> "Criterion":
        return AnyOf(self, other)


class _Comparison(Criterion):
    operator = "="

    def __init__(self, field: Field, value: Any):
        if value is None:
            raise ValueError(f"Comparison value for {field.name} must not be None")
        self.field = field
        self.value = field.coerce(value)

    def _compare(self, left: Any, right: Any) -> bool:
        raise NotImplementedError

    def matches(self, record: Dict[str, Any]) -> bool:
        actual = self.field.extract(record)
        if actual is None:
            return False
        return self._compare(actual, self.value)

    def to_sql(self, dialect: SQLDialect) -> Tuple[str, List[Any]]:
        sql = f"{dialect.field_expr(self.field)} {self.operator} {dialect.placeholder}"
        return sql, [dialect.bind(self.field, self.value)]

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.field.name!r}, {self.value!r})"


class Eq(_Comparison):
    operator = "="

    def _compare(self, left, right):
        return left == right


class Gte(_Comparison):
    operator = ">="

    def _compare(self, left, right):
        return left >= right


class Lte(_Comparison):
    operator = "<="

    def _compare(self, left, right):
        return left <= right


class Between(Criterion):
    """Inclusive range check"""

    def __init__(self, field: Field, low: Any, high: Any):
        self.field = field
        self.low = field.coerce(low)
        self.high = field.coerce(high)

    def matches(self, record: Dict[str, Any]) -> bool:
        actual = self.field.extract(record)
        if actual is None:
            return False
        return self.low <= actual <= self.high

    def to_sql(self, dialect: SQLDialect) -> Tuple[str, List[Any]]:
        p = dialect.placeholder
        sql = f"{dialect.field_expr(self.field)} BETWEEN {p} AND {p}"
        return sql, [dialect.bind(self.field, self.low), dialect.bind(self.field, self.high)]

    def __repr__(self) -> str:
        return f"Between({self.field.name!r}, {self.low!r}, {self.high!r})"


class _Junction(Criterion):
    joiner = "AND"
    empty_sql = "1 = 1"

    def __init__(self, *criteria: Criterion):
        self.criteria: List[Criterion] = list(criteria)

    def to_sql(self, dialect: SQLDialect) -> Tuple[str, List[Any]]:
        if not self.criteria:
            return self.empty_sql, []
        parts = []
        params: List[Any] = []
        for criterion in self.criteria:
            sql, criterion_params = criterion.to_sql(dialect)
            parts.append(f"({sql})")
            params.extend(criterion_params)
        return f" {self.joiner} ".join(parts), params

    def __repr__(self) -> str:
        inner = ", ".join(repr(c) for c in self.criteria)
        return f"{type(self).__name__}({inner})"


class AllOf(_Junction):
    """Conjunction; an empty AllOf matches everything"""
    joiner = "AND"
    empty_sql = "1 = 1"

    def matches(self, record: Dict[str, Any]) -> bool:
        return all(c.matches(record) for c in self.criteria)


class AnyOf(_Junction):
    """Disjunction; an empty AnyOf matches nothing"""
    joiner = "OR"
    empty_sql = "1 = 0"

    def matches(self, record: Dict[str, Any]) -> bool:
        return any(c.matches(record) for c in self.criteria)


@dataclass(frozen=True)
class Ordering:
    """Sort order for a query, ties broken by record id"""
    field: Field
    descending: bool = False

    def to_sql(self, dialect: SQLDialect) -> str:
        direction = "DESC" if self.descending else "ASC"
        return f"{dialect.field_expr(self.field)} {direction}, id {direction}"

    def sort(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        def key(record):
            value = self.field.extract(record)
            return (value is not None, value if value is not None else 0, record.get("id", ""))
        return sorted(records, key=key, reverse=self.descending)


T = TypeVar("T")


@dataclass(frozen=True)
class PageRequest:
    """Zero-based page request"""
    page: int = 0
    size: int = 20
    sort: str = "transaction_date"
    descending: bool = True

    def __post_init__(self):
        if self.page < 0:
            raise ValueError("Page index must not be negative")
        if self.size < 1:
            raise ValueError("Page size must be at least 1")

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass
class Page(Generic[T]):
    """One page of query results"""
    items: List[T]
    page: int
    size: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return math.ceil(self.total / self.size)

    @property
    def has_next(self) -> bool:
        return self.page + 1 < self.total_pages
