"""Exceptions for audit trail operations."""

from typing import Optional

from ..exceptions import ClinicRecordsError


class AuditFetchError(ClinicRecordsError):
    """Raised when the audit trail of a patient cannot be read."""

    def __init__(self, cause: str, patient_id: Optional[str] = None):
        self.cause = cause
        super().__init__(f"Failed to get audit trail: {cause}", entity_id=patient_id)
