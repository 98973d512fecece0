"""
Record store interface.

The engines talk to the relational backend only through this interface:
per-table filtered select/insert/update/delete, "or" groups, and stored
procedure invocation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the format stored in every table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StoreError(Exception):
    """Raised when the backend rejects or fails an operation."""

    def __init__(self, message: str, table: Optional[str] = None):
        self.table = table
        super().__init__(message)


class ProcedureUnavailableError(StoreError):
    """Raised when a stored procedure is not provided by the backend."""

    def __init__(self, name: str):
        self.procedure = name
        super().__init__(f"Stored procedure {name} is not available")


class Op(str, Enum):
    """Comparison operators understood by every store."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    ILIKE = "ilike"
    IN = "in"
    IS_NULL = "is_null"


@dataclass(frozen=True)
class Condition:
    """A single column predicate."""

    column: str
    op: Op
    value: Any = None


@dataclass(frozen=True)
class AnyOf:
    """Conditions joined with OR."""

    conditions: Tuple[Condition, ...]


Predicate = Union[Condition, AnyOf]


@dataclass(frozen=True)
class Ordering:
    column: str
    descending: bool = False


@dataclass(frozen=True)
class Window:
    """Row window selecting rows offset .. offset + limit - 1."""

    offset: int
    limit: int

    @property
    def last(self) -> int:
        return self.offset + self.limit - 1


@dataclass
class SelectResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    count: Optional[int] = None


def eq(column: str, value: Any) -> Condition:
    return Condition(column, Op.EQ, value)


def neq(column: str, value: Any) -> Condition:
    return Condition(column, Op.NEQ, value)


def gte(column: str, value: Any) -> Condition:
    return Condition(column, Op.GTE, value)


def lte(column: str, value: Any) -> Condition:
    return Condition(column, Op.LTE, value)


def ilike(column: str, pattern: str) -> Condition:
    """Case-insensitive LIKE; the pattern uses backslash as escape character."""
    return Condition(column, Op.ILIKE, pattern)


def in_(column: str, values: Sequence[Any]) -> Condition:
    return Condition(column, Op.IN, tuple(values))


def is_null(column: str) -> Condition:
    return Condition(column, Op.IS_NULL)


def any_of(*conditions: Condition) -> AnyOf:
    return AnyOf(tuple(conditions))


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so user text matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class RecordStore(ABC):
    """Abstract base class for record store backends."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the store backend."""
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Sequence[Predicate] = (),
        order_by: Sequence[Ordering] = (),
        window: Optional[Window] = None,
        count: bool = False,
    ) -> SelectResult:
        """
        Select rows matching all filters.

        Args:
            table: Table name
            filters: Predicates joined with AND
            order_by: Sort keys, applied in order
            window: Optional row window
            count: Also return the total number of matching rows

        Returns:
            Matching rows, plus the total count when requested

        Raises:
            StoreError: If the query fails
        """
        pass

    @abstractmethod
    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored."""
        pass

    @abstractmethod
    async def update(
        self, table: str, filters: Sequence[Predicate], patch: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """Apply a patch to every matching row and return the updated rows."""
        pass

    @abstractmethod
    async def delete(self, table: str, filters: Sequence[Predicate]) -> int:
        """Delete matching rows and return how many were removed."""
        pass

    @abstractmethod
    async def call_procedure(self, name: str, args: Dict[str, Any]) -> Any:
        """
        Invoke a stored procedure.

        Raises:
            ProcedureUnavailableError: If the backend has no such procedure
            StoreError: If the procedure fails
        """
        pass

    @abstractmethod
    def supports_procedure(self, name: str) -> bool:
        """Whether call_procedure can run the named procedure."""
        pass

    async def count(self, table: str, filters: Sequence[Predicate] = ()) -> int:
        """Count rows matching all filters."""
        result = await self.select(table, filters, window=Window(0, 1), count=True)
        return result.count or 0

    async def close(self) -> None:
        """Release backend resources."""
        pass


class DocumentStorage(ABC):
    """Object storage holding uploaded patient documents."""

    @abstractmethod
    async def remove(self, paths: List[str]) -> None:
        """Remove stored objects by path."""
        pass
