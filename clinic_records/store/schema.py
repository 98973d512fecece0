"""
SQLAlchemy table definitions for clinic records.

Every table is scoped by ``user_id``, the owning principal. Patients and the
dependent clinical tables carry the soft delete triple
(is_deleted, deleted_at, deleted_by) guarded by a check constraint.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, declarative_base, declared_attr, mapped_column

from .base import utcnow

Base = declarative_base()


def generate_uuid() -> str:
    return str(uuid.uuid4())


PATIENTS_TABLE = "patients"
DELETED_PATIENTS_TABLE = "deleted_patients"
AUDIT_LOG_TABLE = "patient_audit_log"
APPOINTMENTS_TABLE = "appointments"

# Tables whose rows follow the owning patient through soft delete and restore
DEPENDENT_TABLES = (
    "medical_history",
    "medications",
    "allergies",
    "insurance_billing",
    "patient_documents",
)


class SoftDeleteColumnsMixin:
    """
    Soft delete triple shared by patients and their dependent records.

    is_deleted is true exactly when deleted_at and deleted_by are both set.
    """

    is_deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, index=True
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    @declared_attr.directive
    def __table_args__(cls) -> Any:
        table_name = getattr(cls, "__tablename__", cls.__name__.lower())
        return (
            CheckConstraint(
                "(COALESCE(is_deleted, false) = false AND deleted_at IS NULL "
                "AND deleted_by IS NULL) OR "
                "(is_deleted = true AND deleted_at IS NOT NULL "
                "AND deleted_by IS NOT NULL)",
                name=f"ck_{table_name}_deletion_consistency",
            ),
            Index(f"idx_{table_name}_owner", "user_id"),
        )


class PatientDB(SoftDeleteColumnsMixin, Base):  # type: ignore[valid-type,misc]
    """Primary clinical entity."""

    __tablename__ = PATIENTS_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    dob: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    gender: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    emergency_contact_name: Mapped[Optional[str]] = mapped_column(
        String(200), nullable=True
    )
    emergency_contact_phone: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )
    preferred_language: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    preferred_contact_method: Mapped[Optional[str]] = mapped_column(
        String(10), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    # Rows created before soft delete existed carry NULL here
    is_deleted: Mapped[Optional[bool]] = mapped_column(
        Boolean, default=False, nullable=True, index=True
    )


class DependentRecordMixin(SoftDeleteColumnsMixin):
    """Columns common to every record owned by a patient."""

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)

    @declared_attr
    def patient_id(cls) -> Mapped[str]:
        return mapped_column(
            String(36), ForeignKey("patients.id"), nullable=False, index=True
        )

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class MedicalHistoryDB(DependentRecordMixin, Base):  # type: ignore[valid-type,misc]
    __tablename__ = "medical_history"

    condition: Mapped[str] = mapped_column(String(200), nullable=False)
    diagnosed_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class MedicationDB(DependentRecordMixin, Base):  # type: ignore[valid-type,misc]
    __tablename__ = "medications"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    dosage: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    frequency: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class AllergyDB(DependentRecordMixin, Base):  # type: ignore[valid-type,misc]
    __tablename__ = "allergies"

    allergen: Mapped[str] = mapped_column(String(200), nullable=False)
    severity: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    reaction: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class InsuranceBillingDB(DependentRecordMixin, Base):  # type: ignore[valid-type,misc]
    __tablename__ = "insurance_billing"

    provider: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    policy_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)


class PatientDocumentDB(DependentRecordMixin, Base):  # type: ignore[valid-type,misc]
    __tablename__ = "patient_documents"

    file_name: Mapped[str] = mapped_column(String(300), nullable=False)
    storage_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    content_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)


class AppointmentDB(Base):  # type: ignore[valid-type,misc]
    """Appointments are hard deleted with the patient, never soft deleted."""

    __tablename__ = APPOINTMENTS_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    patient_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("patients.id"), nullable=False, index=True
    )
    appointment_date: Mapped[date] = mapped_column(
        "date", Date, nullable=False, index=True
    )
    time: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class DeletedPatientDB(Base):  # type: ignore[valid-type,misc]
    """Snapshot written once per soft delete; restorable while can_restore is set."""

    __tablename__ = DELETED_PATIENTS_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    original_patient_id: Mapped[str] = mapped_column(
        String(36), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    patient_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    snapshot_checksum: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    deletion_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    deleted_by: Mapped[str] = mapped_column(String(100), nullable=False)
    deleted_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, index=True
    )
    can_restore: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PatientAuditLogDB(Base):  # type: ignore[valid-type,misc]
    """Append-only log of mutations against patient-scoped tables."""

    __tablename__ = AUDIT_LOG_TABLE

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    patient_id: Mapped[str] = mapped_column(String(36), nullable=False)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    operation: Mapped[str] = mapped_column(String(10), nullable=False)
    old_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    changed_fields: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("idx_audit_patient_owner", "patient_id", "user_id", "created_at"),
        CheckConstraint(
            "operation IN ('INSERT', 'UPDATE', 'DELETE', 'RESTORE')",
            name="ck_patient_audit_log_operation",
        ),
    )
