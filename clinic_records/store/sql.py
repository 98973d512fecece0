"""
SQL record store.

Implements the record store interface on SQLAlchemy Core so the same engines
run against PostgreSQL in production and SQLite in development and tests.
"""

import re
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import (
    MetaData,
    Table,
    asc,
    create_engine,
    desc,
    func,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.elements import ColumnElement

from .base import (
    AnyOf,
    Condition,
    DocumentStorage,
    Op,
    Ordering,
    Predicate,
    ProcedureUnavailableError,
    RecordStore,
    SelectResult,
    StoreError,
    Window,
)
from .schema import Base

ProcedureFn = Callable[..., Any]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLTransaction:
    """Table operations bound to one open database transaction."""

    def __init__(self, metadata: MetaData, connection: Connection):
        self.metadata = metadata
        self.connection = connection

    def _table(self, name: str) -> Table:
        table = self.metadata.tables.get(name)
        if table is None:
            raise StoreError(f"Unknown table {name}", table=name)
        return table

    def _condition(self, table: Table, condition: Condition) -> ColumnElement[bool]:
        if condition.column not in table.c:
            raise StoreError(
                f"Unknown column {table.name}.{condition.column}", table=table.name
            )
        column = table.c[condition.column]
        value = condition.value

        if condition.op is Op.IS_NULL or (condition.op is Op.EQ and value is None):
            return column.is_(None)
        if condition.op is Op.EQ:
            return column == value
        if condition.op is Op.NEQ:
            return column != value
        if condition.op is Op.GT:
            return column > value
        if condition.op is Op.GTE:
            return column >= value
        if condition.op is Op.LT:
            return column < value
        if condition.op is Op.LTE:
            return column <= value
        if condition.op is Op.ILIKE:
            return column.ilike(value, escape="\\")
        if condition.op is Op.IN:
            return column.in_(list(value))

        raise StoreError(f"Unsupported operator {condition.op}", table=table.name)

    def _where(
        self, table: Table, filters: Sequence[Predicate]
    ) -> List[ColumnElement[bool]]:
        clauses: List[ColumnElement[bool]] = []
        for predicate in filters:
            if isinstance(predicate, AnyOf):
                clauses.append(
                    or_(*(self._condition(table, c) for c in predicate.conditions))
                )
            else:
                clauses.append(self._condition(table, predicate))
        return clauses

    def _primary_key(self, table: Table) -> Any:
        columns = list(table.primary_key.columns)
        if len(columns) != 1:
            raise StoreError(
                f"Table {table.name} needs a single-column primary key", table=table.name
            )
        return columns[0]

    def select(
        self,
        table: str,
        filters: Sequence[Predicate] = (),
        order_by: Sequence[Ordering] = (),
        window: Optional[Window] = None,
        count: bool = False,
    ) -> SelectResult:
        t = self._table(table)
        clauses = self._where(t, filters)

        stmt = select(t).where(*clauses)
        for ordering in order_by:
            if ordering.column not in t.c:
                raise StoreError(
                    f"Unknown column {table}.{ordering.column}", table=table
                )
            column = t.c[ordering.column]
            stmt = stmt.order_by(desc(column) if ordering.descending else asc(column))

        if window is not None:
            stmt = stmt.offset(window.offset).limit(window.limit)

        rows = [dict(row._mapping) for row in self.connection.execute(stmt)]

        total = None
        if count:
            total = self.connection.execute(
                select(func.count()).select_from(t).where(*clauses)
            ).scalar_one()

        return SelectResult(rows=rows, count=total)

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        t = self._table(table)
        pk = self._primary_key(t)

        result = self.connection.execute(t.insert().values(**row))
        inserted_id = result.inserted_primary_key[0]

        stored = self.connection.execute(select(t).where(pk == inserted_id)).first()
        if stored is None:
            raise StoreError(f"Inserted row vanished from {table}", table=table)
        return dict(stored._mapping)

    def update(
        self, table: str, filters: Sequence[Predicate], patch: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise StoreError(f"Refusing unfiltered update of {table}", table=table)

        t = self._table(table)
        pk = self._primary_key(t)
        clauses = self._where(t, filters)

        ids = list(self.connection.execute(select(pk).where(*clauses)).scalars())
        if not ids:
            return []

        self.connection.execute(t.update().where(pk.in_(ids)).values(**patch))
        return [
            dict(row._mapping)
            for row in self.connection.execute(select(t).where(pk.in_(ids)))
        ]

    def delete(self, table: str, filters: Sequence[Predicate]) -> int:
        if not filters:
            raise StoreError(f"Refusing unfiltered delete from {table}", table=table)

        t = self._table(table)
        result = self.connection.execute(t.delete().where(*self._where(t, filters)))
        return result.rowcount or 0


class SQLRecordStore(RecordStore):
    """SQL database backend for the record store."""

    def __init__(
        self,
        connection_string: str,
        metadata: Optional[MetaData] = None,
        echo: bool = False,
    ):
        """
        Initialize SQL record store.

        Args:
            connection_string: SQLAlchemy database URL
            metadata: Table metadata, defaults to the clinic schema
            echo: Log emitted SQL
        """
        self.connection_string = connection_string
        self.metadata = metadata if metadata is not None else Base.metadata
        self.echo = echo
        self.engine: Optional[Engine] = None
        self._procedures: Dict[str, ProcedureFn] = {}

    async def initialize(self) -> None:
        """Create the engine and any missing tables."""
        if self.engine is not None:
            return

        if self.connection_string.startswith("sqlite"):
            # SQLite doesn't support pool_size and max_overflow
            kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.connection_string or self.connection_string in (
                "sqlite://",
                "sqlite+pysqlite://",
            ):
                # One shared connection, otherwise every checkout sees an empty db
                kwargs["poolclass"] = StaticPool
            self.engine = create_engine(
                self.connection_string, echo=self.echo, **kwargs
            )
        else:
            self.engine = create_engine(
                self.connection_string,
                echo=self.echo,
                pool_pre_ping=True,
                pool_size=10,
                max_overflow=20,
            )

        try:
            self.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to create tables: {e}") from e

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise RuntimeError("Store not initialized. Call initialize() first.")
        return self.engine

    @contextmanager
    def transaction(self) -> Iterator[SQLTransaction]:
        """Open a transaction that commits on success and rolls back on error."""
        engine = self._require_engine()
        try:
            with engine.begin() as connection:
                yield SQLTransaction(self.metadata, connection)
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    def register_procedure(self, name: str, fn: ProcedureFn) -> None:
        """
        Register a procedure run inside a single transaction.

        Args:
            name: Procedure name used with call_procedure
            fn: Callable invoked as fn(transaction, **args)
        """
        if not _IDENTIFIER.match(name):
            raise ValueError(f"Invalid procedure name: {name}")
        self._procedures[name] = fn

    def supports_procedure(self, name: str) -> bool:
        if name in self._procedures:
            return True

        engine = self._require_engine()
        if engine.dialect.name != "postgresql":
            return False

        try:
            with engine.connect() as connection:
                found = connection.execute(
                    text("SELECT 1 FROM pg_proc WHERE proname = :name"),
                    {"name": name},
                ).first()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to look up procedure {name}: {e}") from e
        return found is not None

    async def select(
        self,
        table: str,
        filters: Sequence[Predicate] = (),
        order_by: Sequence[Ordering] = (),
        window: Optional[Window] = None,
        count: bool = False,
    ) -> SelectResult:
        with self.transaction() as tx:
            return tx.select(table, filters, order_by, window, count)

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        with self.transaction() as tx:
            return tx.insert(table, row)

    async def update(
        self, table: str, filters: Sequence[Predicate], patch: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        with self.transaction() as tx:
            return tx.update(table, filters, patch)

    async def delete(self, table: str, filters: Sequence[Predicate]) -> int:
        with self.transaction() as tx:
            return tx.delete(table, filters)

    async def call_procedure(self, name: str, args: Dict[str, Any]) -> Any:
        procedure = self._procedures.get(name)
        if procedure is not None:
            with self.transaction() as tx:
                return procedure(tx, **args)

        if not self.supports_procedure(name):
            raise ProcedureUnavailableError(name)

        for key in args:
            if not _IDENTIFIER.match(key):
                raise ValueError(f"Invalid procedure argument name: {key}")
        named_args = ", ".join(f"{key} => :{key}" for key in args)

        with self.transaction() as tx:
            return tx.connection.execute(
                text(f"SELECT {name}({named_args})"), args  # nosec B608
            ).scalar()

    async def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None


class LocalDocumentStorage(DocumentStorage):
    """Patient documents kept as files below a root directory."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    async def remove(self, paths: List[str]) -> None:
        for relative in paths:
            target = (self.root / relative).resolve()
            if self.root not in target.parents:
                raise ValueError(f"Document path escapes storage root: {relative}")
            target.unlink(missing_ok=True)
