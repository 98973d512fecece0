"""
Tests for the patient records facade.
"""

from datetime import date
from unittest.mock import Mock

import pytest
import pytest_asyncio

from clinic_records import ClinicConfig, PatientRecords
from clinic_records.store import PATIENTS_TABLE, LocalDocumentStorage

PRINCIPAL = "dr-house"


@pytest_asyncio.fixture
async def records(tmp_path):
    """Open records over an in-memory database with document storage."""
    records = await PatientRecords.open(
        ClinicConfig(
            environment="testing",
            database_url="sqlite://",
            document_storage_path=str(tmp_path / "documents"),
        ),
        today=lambda: date(2024, 6, 15),
    )
    yield records
    await records.close()


class TestPatientRecords:
    """Test wiring and the patient lifecycle through the facade."""

    @pytest.mark.asyncio
    async def test_open_wires_components(self, records):
        """Test the atomic procedure and document storage are set up."""
        assert records.deletion.use_procedure is True
        assert isinstance(records.deletion.document_storage, LocalDocumentStorage)
        assert records.deletion.audit_trail is records.audit_trail
        assert records.search.today() == date(2024, 6, 15)

    @pytest.mark.asyncio
    async def test_lifecycle(self, records):
        """Test search, delete, audit, restore and purge."""
        patient = await records.store.insert(
            PATIENTS_TABLE, {"user_id": PRINCIPAL, "name": "Asha Kumar"}
        )

        assert (await records.search_patients(PRINCIPAL)).total_count == 1

        deletion = await records.soft_delete_patient(patient["id"], PRINCIPAL, "duplicate")
        assert (await records.search_patients(PRINCIPAL)).total_count == 0
        assert await records.get_patient_by_id(patient["id"], PRINCIPAL) is None

        backups = await records.get_deleted_patients(PRINCIPAL)
        assert [b.id for b in backups] == [deletion.backup_id]
        assert backups[0].deletion_reason == "duplicate"

        await records.restore_patient(deletion.backup_id, PRINCIPAL)
        assert (await records.get_patient_statistics(PRINCIPAL)).total_patients == 1

        trail = await records.get_patient_audit_trail(patient["id"], PRINCIPAL)
        assert [e.operation.value for e in trail] == ["RESTORE", "DELETE"]

        removed = await records.permanently_delete_patient(patient["id"], PRINCIPAL)
        assert removed[PATIENTS_TABLE] == 1
        assert await records.get_patients_with_upcoming_appointments(PRINCIPAL) == []

    @pytest.mark.asyncio
    async def test_permission_checker_is_passed_on(self):
        """Test constructor options reach the deletion service."""
        records = await PatientRecords.open(
            ClinicConfig(environment="testing", database_url="sqlite://"),
            permission_checker=Mock(return_value=False),
        )
        try:
            with pytest.raises(PermissionError):
                await records.soft_delete_patient("p1", PRINCIPAL)
        finally:
            await records.close()
