"""
Soft delete cascade helpers.

Builds the soft delete triple, the backup snapshot and the deletion audit
entry, and propagates a triple across the dependent clinical tables.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic_core import to_jsonable_python

from ..audit_trail import AuditOperation, diff_fields
from ..store import (
    DEPENDENT_TABLES,
    PATIENTS_TABLE,
    Predicate,
    RecordStore,
    eq,
    neq,
)
from .models import snapshot_checksum

logger = logging.getLogger(__name__)

SOFT_DELETE_FIELDS = ["is_deleted", "deleted_at", "deleted_by"]


def deleted_triple(principal_id: str, deleted_at: datetime) -> Dict[str, Any]:
    return {"is_deleted": True, "deleted_at": deleted_at, "deleted_by": principal_id}


def active_triple() -> Dict[str, Any]:
    return {"is_deleted": False, "deleted_at": None, "deleted_by": None}


def patient_owner(patient_id: str, principal_id: str) -> List[Predicate]:
    return [eq("id", patient_id), eq("user_id", principal_id)]


def owned_by_patient(patient_id: str, principal_id: str) -> List[Predicate]:
    return [eq("patient_id", patient_id), eq("user_id", principal_id)]


def earlier_backups(patient_id: str, principal_id: str, backup_id: str) -> List[Predicate]:
    """Restorable backups of a patient other than the given one."""
    return [
        eq("original_patient_id", patient_id),
        eq("user_id", principal_id),
        eq("can_restore", True),
        neq("id", backup_id),
    ]


def snapshot_of(patient_row: Dict[str, Any]) -> Dict[str, Any]:
    """Patient row as JSON-compatible values."""
    return to_jsonable_python(dict(patient_row))


def build_backup_row(
    patient_row: Dict[str, Any],
    principal_id: str,
    deletion_reason: Optional[str],
    deleted_at: datetime,
) -> Dict[str, Any]:
    """
    Build the deleted_patients row for a patient about to be soft deleted.

    The snapshot is the full pre-deletion field set of the patient.
    """
    patient_data = snapshot_of(patient_row)
    return {
        "original_patient_id": patient_row["id"],
        "user_id": principal_id,
        "patient_data": patient_data,
        "snapshot_checksum": snapshot_checksum(patient_data),
        "deletion_reason": deletion_reason,
        "deleted_by": principal_id,
        "deleted_at": deleted_at,
        "can_restore": True,
    }


def deletion_audit_entry(
    patient_row: Dict[str, Any],
    principal_id: str,
    deleted_at: datetime,
    backup_id: Optional[str],
) -> Dict[str, Any]:
    """Keyword arguments describing the DELETE audit entry of a soft delete."""
    new_values = deleted_triple(principal_id, deleted_at)
    new_values["backup_id"] = backup_id
    return {
        "principal_id": principal_id,
        "patient_id": patient_row["id"],
        "operation": AuditOperation.DELETE,
        "table_name": PATIENTS_TABLE,
        "old_values": snapshot_of(patient_row),
        "new_values": new_values,
        "changed_fields": diff_fields(
            {field: patient_row.get(field) for field in SOFT_DELETE_FIELDS},
            deleted_triple(principal_id, deleted_at),
        ),
    }


def split_results(
    tables: Sequence[str], results: Sequence[Any]
) -> Tuple[Dict[str, Any], Dict[str, str]]:
    """Separate gather results per table; cancellation is re-raised."""
    succeeded: Dict[str, Any] = {}
    failures: Dict[str, str] = {}
    for table, result in zip(tables, results):
        if isinstance(result, Exception):
            failures[table] = str(result)
        elif isinstance(result, BaseException):
            raise result
        else:
            succeeded[table] = result
    return succeeded, failures


async def cascade_update(
    store: RecordStore,
    patient_id: str,
    principal_id: str,
    patch: Dict[str, Any],
    tables: Sequence[str] = DEPENDENT_TABLES,
) -> Tuple[Dict[str, int], Dict[str, str]]:
    """
    Apply a soft delete triple to every dependent table concurrently.

    Every table is attempted even when another one fails.

    Returns:
        Tuple of (rows updated per table, error per failed table)
    """
    results = await asyncio.gather(
        *(
            store.update(table, owned_by_patient(patient_id, principal_id), patch)
            for table in tables
        ),
        return_exceptions=True,
    )
    succeeded, failures = split_results(tables, results)
    for table, error in failures.items():
        logger.error(f"Cascade update of {table} for patient {patient_id} failed: {error}")
    return {table: len(rows) for table, rows in succeeded.items()}, failures


async def find_divergent_tables(
    store: RecordStore,
    patient_id: str,
    principal_id: str,
    expect_deleted: bool,
    tables: Sequence[str] = DEPENDENT_TABLES,
) -> Dict[str, str]:
    """
    Re-read the dependent tables and report those not in the expected state.

    Returns:
        Mapping of table name to a description of the divergence
    """
    state = [eq("is_deleted", False) if expect_deleted else eq("is_deleted", True)]
    results = await asyncio.gather(
        *(
            store.count(table, owned_by_patient(patient_id, principal_id) + state)
            for table in tables
        ),
        return_exceptions=True,
    )
    counts, failures = split_results(tables, results)
    divergent = {table: f"verification failed: {error}" for table, error in failures.items()}
    label = "active" if expect_deleted else "deleted"
    for table, remaining in counts.items():
        if remaining:
            divergent[table] = f"{remaining} rows still {label}"
    return divergent
