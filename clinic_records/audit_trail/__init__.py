"""
Audit Trail Module - patient change history.

Provides the append-only audit log of operations performed against a
patient's records and the reader that returns it newest first.
"""

from .exceptions import AuditFetchError
from .logger import (
    PatientAuditTrail,
    build_audit_row,
    current_request,
    set_request_context,
)
from .models import AuditLogEntry, AuditOperation, diff_fields

__all__ = [
    # Trail
    "PatientAuditTrail",
    "build_audit_row",
    "set_request_context",
    "current_request",
    # Models
    "AuditLogEntry",
    "AuditOperation",
    "diff_fields",
    # Exceptions
    "AuditFetchError",
]
