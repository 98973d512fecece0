"""
Data models for the patient audit trail.

Entries are append-only records of a mutation against a patient-scoped table.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class AuditOperation(str, Enum):
    """Kinds of mutation recorded against patient data."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    RESTORE = "RESTORE"


class AuditLogEntry(BaseModel):
    """
    Immutable audit trail entry.

    Captures who changed what (table, before and after state, changed fields),
    when, and from where (IP address, user agent).
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str = Field(..., description="Unique identifier for the audit entry")
    user_id: str = Field(..., description="Owning principal")
    patient_id: str = Field(..., description="Patient the change belongs to")
    table_name: str = Field(..., description="Table that was changed")
    operation: AuditOperation = Field(..., description="Kind of mutation")
    old_values: Optional[Dict[str, Any]] = Field(None, description="State before")
    new_values: Optional[Dict[str, Any]] = Field(None, description="State after")
    changed_fields: List[str] = Field(
        default_factory=list, description="Names of the fields that changed"
    )
    ip_address: Optional[str] = Field(None, description="Client IP address")
    user_agent: Optional[str] = Field(None, description="Client user agent")
    created_at: datetime = Field(..., description="When the entry was written")

    @field_validator("changed_fields", mode="before")
    @classmethod
    def default_changed_fields(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "AuditLogEntry":
        """Build an entry from a patient_audit_log row."""
        return cls.model_validate(row)

    def to_log_format(self) -> str:
        """
        Convert to a standardized log format string.

        Returns:
            Formatted log string
        """
        parts = [
            f"[{self.created_at.isoformat()}]",
            f"USER={self.user_id}",
            f"OPERATION={self.operation.value}",
            f"ENTITY={self.table_name}:{self.patient_id}",
        ]

        if self.changed_fields:
            parts.append(f"FIELDS={','.join(self.changed_fields)}")

        if self.ip_address:
            parts.append(f"IP={self.ip_address}")

        return " ".join(parts)


def diff_fields(
    old_values: Optional[Dict[str, Any]], new_values: Optional[Dict[str, Any]]
) -> List[str]:
    """Names of the fields whose value differs between two states, sorted."""
    old_values = old_values or {}
    new_values = new_values or {}
    keys = set(old_values) | set(new_values)
    return sorted(k for k in keys if old_values.get(k) != new_values.get(k))
