"""
Record Store Module - relational backend access.

Provides the record store interface used by every engine, the clinic table
schema, and a SQLAlchemy implementation.
"""

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
    any_of,
    eq,
    escape_like,
    gte,
    ilike,
    in_,
    is_null,
    lte,
    neq,
    utcnow,
)
from .schema import (
    APPOINTMENTS_TABLE,
    AUDIT_LOG_TABLE,
    DELETED_PATIENTS_TABLE,
    DEPENDENT_TABLES,
    PATIENTS_TABLE,
    Base,
)
from .sql import LocalDocumentStorage, SQLRecordStore, SQLTransaction

__all__ = [
    # Interface
    "RecordStore",
    "DocumentStorage",
    "SelectResult",
    # Predicates
    "Predicate",
    "Condition",
    "AnyOf",
    "Op",
    "Ordering",
    "Window",
    "eq",
    "neq",
    "gte",
    "lte",
    "ilike",
    "in_",
    "is_null",
    "any_of",
    "escape_like",
    "utcnow",
    # Schema
    "Base",
    "PATIENTS_TABLE",
    "DEPENDENT_TABLES",
    "DELETED_PATIENTS_TABLE",
    "AUDIT_LOG_TABLE",
    "APPOINTMENTS_TABLE",
    # Implementations
    "SQLRecordStore",
    "SQLTransaction",
    "LocalDocumentStorage",
    # Exceptions
    "StoreError",
    "ProcedureUnavailableError",
]
