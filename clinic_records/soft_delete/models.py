"""
Data models for soft delete operations.

These models define deletion requests, the deleted patient backup snapshot,
and the results reported back to callers.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def snapshot_checksum(patient_data: Dict[str, Any]) -> str:
    """
    Calculate the SHA-256 checksum of a patient snapshot.

    Args:
        patient_data: JSON-compatible patient field set

    Returns:
        Hex digest over the key-sorted JSON representation
    """
    json_str = json.dumps(patient_data, sort_keys=True, default=str)
    return hashlib.sha256(json_str.encode()).hexdigest()


class DeletionRequest(BaseModel):
    """Model for requesting the soft deletion of a patient."""

    patient_id: str = Field(
        ..., description="ID of patient to delete", min_length=1, max_length=100
    )
    principal_id: str = Field(
        ..., description="Owning principal requesting deletion", min_length=1, max_length=100
    )
    reason: Optional[str] = Field(
        None, description="Optional free-text reason for deletion"
    )

    @field_validator("reason")
    @classmethod
    def normalize_reason(cls, v: Optional[str]) -> Optional[str]:
        """Strip the reason; a blank reason is no reason."""
        if v is None:
            return None
        v = v.strip()
        return v or None


class DeletedPatientBackup(BaseModel):
    """
    Snapshot of a patient taken when it was soft deleted.

    can_restore flips to False once a restore used the backup.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    original_patient_id: str
    user_id: str
    patient_data: Dict[str, Any]
    snapshot_checksum: Optional[str] = None
    deletion_reason: Optional[str] = None
    deleted_by: str
    deleted_at: datetime
    can_restore: bool = True

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeletedPatientBackup":
        return cls.model_validate(row)

    def verify_snapshot(self) -> bool:
        """
        Verify the snapshot still matches the checksum taken at deletion.

        Returns:
            True if the checksum matches, False if it differs or is missing
        """
        if not self.snapshot_checksum:
            return False
        return snapshot_checksum(self.patient_data) == self.snapshot_checksum


class DeletionResult(BaseModel):
    """Outcome of a patient soft delete."""

    patient_id: str
    backup_id: Optional[str] = None
    deleted_at: datetime
    atomic: bool = Field(..., description="Whether the atomic procedure was used")
    cascaded: Dict[str, int] = Field(
        default_factory=dict, description="Dependent rows soft deleted per table"
    )


class RestoreResult(BaseModel):
    """Outcome of a patient restore."""

    patient_id: str
    backup_id: str
    restored: Dict[str, int] = Field(
        default_factory=dict, description="Dependent rows restored per table"
    )
    audit_entry_id: Optional[str] = None
