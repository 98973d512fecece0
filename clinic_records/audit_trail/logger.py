"""
Patient audit trail writer and reader.

Appends entries to the patient_audit_log table and reads them back,
newest first, scoped by patient and owning principal.
"""

import logging
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic_core import to_jsonable_python

from ..store import (
    AUDIT_LOG_TABLE,
    PATIENTS_TABLE,
    Ordering,
    RecordStore,
    StoreError,
    eq,
    utcnow,
)
from .exceptions import AuditFetchError
from .models import AuditLogEntry, AuditOperation

logger = logging.getLogger(__name__)

# Request provenance (ip_address, user_agent) for the current execution
current_request: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "current_request", default=None
)


def set_request_context(
    ip_address: Optional[str] = None, user_agent: Optional[str] = None
) -> None:
    """
    Record where the current request comes from.

    Entries written afterwards in the same context carry this provenance.
    """
    current_request.set({"ip_address": ip_address, "user_agent": user_agent})


def build_audit_row(
    principal_id: str,
    patient_id: str,
    operation: Union[str, AuditOperation],
    table_name: str = PATIENTS_TABLE,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    changed_fields: Optional[List[str]] = None,
    created_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Build a patient_audit_log row.

    Before and after states are converted to JSON-compatible values so they
    can be stored in a JSON column.
    """
    request = current_request.get() or {}
    return {
        "user_id": principal_id,
        "patient_id": patient_id,
        "table_name": table_name,
        "operation": AuditOperation(operation).value,
        "old_values": to_jsonable_python(old_values),
        "new_values": to_jsonable_python(new_values),
        "changed_fields": list(changed_fields or []),
        "ip_address": request.get("ip_address"),
        "user_agent": request.get("user_agent"),
        "created_at": created_at or utcnow(),
    }


class PatientAuditTrail:
    """Append-only audit trail for patient data.

    Example:
        >>> trail = PatientAuditTrail(store)
        >>> await trail.record(
        ...     principal_id="dr-house",
        ...     patient_id=patient_id,
        ...     operation=AuditOperation.RESTORE,
        ...     new_values={"restored_from": backup_id},
        ... )
        >>> entries = await trail.get_patient_audit_trail(patient_id, "dr-house")

    Note:
        Entries are never updated or deleted through this class.
    """

    def __init__(self, store: RecordStore):
        """
        Initialize the audit trail.

        Args:
            store: Record store holding the patient_audit_log table
        """
        self.store = store

    async def record(
        self,
        principal_id: str,
        patient_id: str,
        operation: Union[str, AuditOperation],
        table_name: str = PATIENTS_TABLE,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        changed_fields: Optional[List[str]] = None,
    ) -> AuditLogEntry:
        """
        Append an audit trail entry.

        Args:
            principal_id: Owning principal performing the change
            patient_id: Patient the change belongs to
            operation: Kind of mutation
            table_name: Table that was changed
            old_values: State before the change
            new_values: State after the change
            changed_fields: Names of changed fields

        Returns:
            The stored entry

        Raises:
            StoreError: If the entry cannot be written
        """
        row = build_audit_row(
            principal_id=principal_id,
            patient_id=patient_id,
            operation=operation,
            table_name=table_name,
            old_values=old_values,
            new_values=new_values,
            changed_fields=changed_fields,
        )
        stored = await self.store.insert(AUDIT_LOG_TABLE, row)
        entry = AuditLogEntry.from_row(stored)
        logger.debug(entry.to_log_format())
        return entry

    async def get_patient_audit_trail(
        self, patient_id: str, principal_id: str
    ) -> List[AuditLogEntry]:
        """
        Get the audit trail of a patient, newest first.

        Args:
            patient_id: Patient to read entries for
            principal_id: Owning principal

        Returns:
            Entries ordered by creation time descending; empty when none exist

        Raises:
            AuditFetchError: If the entries cannot be read
        """
        try:
            result = await self.store.select(
                AUDIT_LOG_TABLE,
                [eq("patient_id", patient_id), eq("user_id", principal_id)],
                order_by=[Ordering("created_at", descending=True)],
            )
            return [AuditLogEntry.from_row(row) for row in result.rows]
        except (StoreError, ValueError) as e:
            logger.error(f"Get patient audit trail error: {e}")
            raise AuditFetchError(str(e), patient_id=patient_id) from e
