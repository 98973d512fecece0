"""
Atomic soft delete procedure.

Runs backup, patient update, dependent cascade and the audit entry inside a
single transaction, so either every change lands or none does. On
PostgreSQL a server-side function of the same name can be used instead.
"""

from typing import Any, Dict, Optional

from ..audit_trail import build_audit_row
from ..store import (
    AUDIT_LOG_TABLE,
    DELETED_PATIENTS_TABLE,
    DEPENDENT_TABLES,
    PATIENTS_TABLE,
    SQLRecordStore,
    SQLTransaction,
    utcnow,
)
from .cascade import (
    build_backup_row,
    deleted_triple,
    deletion_audit_entry,
    earlier_backups,
    owned_by_patient,
    patient_owner,
)
from .exceptions import AlreadyDeletedError, NotFoundError

SOFT_DELETE_PROCEDURE = "soft_delete_patient_with_backup"


def soft_delete_patient_with_backup(
    tx: SQLTransaction,
    patient_id_param: str,
    user_id_param: str,
    deletion_reason_param: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Soft delete a patient and everything it owns in one transaction.

    Args:
        tx: Open transaction
        patient_id_param: Patient to delete
        user_id_param: Owning principal
        deletion_reason_param: Optional reason stored with the backup

    Returns:
        Backup id, deletion time and rows soft deleted per dependent table

    Raises:
        NotFoundError: If the patient does not exist under the principal
        AlreadyDeletedError: If the patient is already soft deleted
    """
    owner = patient_owner(patient_id_param, user_id_param)
    rows = tx.select(PATIENTS_TABLE, owner).rows
    if not rows:
        raise NotFoundError("Patient", patient_id_param)
    patient = rows[0]
    if patient.get("is_deleted"):
        raise AlreadyDeletedError(patient_id_param)

    deleted_at = utcnow()
    triple = deleted_triple(user_id_param, deleted_at)

    backup = tx.insert(
        DELETED_PATIENTS_TABLE,
        build_backup_row(patient, user_id_param, deletion_reason_param, deleted_at),
    )
    tx.update(PATIENTS_TABLE, owner, triple)
    tx.update(
        DELETED_PATIENTS_TABLE,
        earlier_backups(patient_id_param, user_id_param, backup["id"]),
        {"can_restore": False},
    )

    cascaded = {
        table: len(tx.update(table, owned_by_patient(patient_id_param, user_id_param), triple))
        for table in DEPENDENT_TABLES
    }

    tx.insert(
        AUDIT_LOG_TABLE,
        build_audit_row(
            created_at=deleted_at,
            **deletion_audit_entry(patient, user_id_param, deleted_at, backup["id"]),
        ),
    )

    return {"backup_id": backup["id"], "deleted_at": deleted_at, "cascaded": cascaded}


def register_procedures(store: SQLRecordStore) -> None:
    """Register the soft delete procedures with a SQL record store."""
    store.register_procedure(SOFT_DELETE_PROCEDURE, soft_delete_patient_with_backup)
