"""Exceptions for soft delete, restore and permanent delete operations."""

from typing import Dict, List, Optional

from ..exceptions import ClinicRecordsError


class SoftDeleteError(ClinicRecordsError):
    """Base exception for soft delete operations."""


class NotFoundError(SoftDeleteError):
    """Raised when a patient or backup does not exist under the given principal."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        super().__init__(f"{entity} {entity_id} not found", entity_id=entity_id)


class AlreadyDeletedError(SoftDeleteError):
    """Raised when attempting to delete an already deleted patient."""

    def __init__(self, patient_id: str):
        super().__init__(
            f"Patient {patient_id} is already deleted and cannot be deleted again",
            entity_id=patient_id,
        )


class RestoreNotAllowedError(SoftDeleteError):
    """Raised when a backup can no longer be used for restoration."""

    def __init__(self, backup_id: str, reason: str = "backup has already been used"):
        super().__init__(
            f"Deleted patient {backup_id} cannot be restored: {reason}",
            entity_id=backup_id,
        )


class DeletionFailedError(SoftDeleteError):
    """Raised when the store fails while deleting a patient."""

    def __init__(self, cause: str, patient_id: Optional[str] = None, permanent: bool = False):
        self.cause = cause
        action = "permanently delete" if permanent else "delete"
        super().__init__(f"Failed to {action} patient: {cause}", entity_id=patient_id)


class RestoreFailedError(SoftDeleteError):
    """Raised when the store fails while restoring a patient."""

    def __init__(self, cause: str, entity_id: Optional[str] = None):
        self.cause = cause
        super().__init__(f"Failed to restore patient: {cause}", entity_id=entity_id)


class BackupFetchError(SoftDeleteError):
    """Raised when the deleted patient backups cannot be listed."""

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(f"Failed to get deleted patients: {cause}")


class PartialCascadeFailure(SoftDeleteError):
    """
    Raised when the patient row changed but some dependent tables did not follow.

    The patient and its dependent records are left in divergent soft delete
    states; ``failures`` maps each affected table to what went wrong.
    """

    def __init__(self, operation: str, patient_id: str, failures: Dict[str, str]):
        self.operation = operation
        self.failures = dict(failures)
        details = "; ".join(f"{table}: {error}" for table, error in sorted(failures.items()))
        super().__init__(
            f"Patient {patient_id} {operation} reached the patient record but not "
            f"every dependent table ({details})",
            entity_id=patient_id,
        )

    @property
    def failed_tables(self) -> List[str]:
        return sorted(self.failures)
