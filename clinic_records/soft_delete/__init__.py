"""
Soft Delete Module - recoverable patient deletion.

Provides the deletion service, the atomic soft delete procedure, and the
backup snapshot model used to restore a patient once.
"""

from .exceptions import (
    AlreadyDeletedError,
    BackupFetchError,
    DeletionFailedError,
    NotFoundError,
    PartialCascadeFailure,
    RestoreFailedError,
    RestoreNotAllowedError,
    SoftDeleteError,
)
from .models import (
    DeletedPatientBackup,
    DeletionRequest,
    DeletionResult,
    RestoreResult,
    snapshot_checksum,
)
from .procedures import (
    SOFT_DELETE_PROCEDURE,
    register_procedures,
    soft_delete_patient_with_backup,
)
from .services import PatientDeletionService

__all__ = [
    # Services
    "PatientDeletionService",
    # Procedures
    "SOFT_DELETE_PROCEDURE",
    "soft_delete_patient_with_backup",
    "register_procedures",
    # Models
    "DeletionRequest",
    "DeletionResult",
    "RestoreResult",
    "DeletedPatientBackup",
    "snapshot_checksum",
    # Exceptions
    "SoftDeleteError",
    "NotFoundError",
    "AlreadyDeletedError",
    "RestoreNotAllowedError",
    "DeletionFailedError",
    "RestoreFailedError",
    "BackupFetchError",
    "PartialCascadeFailure",
]
