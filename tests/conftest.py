"""Shared fixtures for clinic records tests."""

from datetime import date
from typing import Any, Dict, List

import pytest
import pytest_asyncio

from clinic_records.config import ClinicConfig, DeletionStrategy
from clinic_records.store import (
    DEPENDENT_TABLES,
    PATIENTS_TABLE,
    SQLRecordStore,
    StoreError,
    eq,
)

PRINCIPAL = "dr-house"


class FlakyStore(SQLRecordStore):
    """SQL store whose writes to chosen tables fail or silently do nothing."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.failing_tables: set = set()
        self.ignored_tables: set = set()

    async def update(self, table, filters, patch):
        if table in self.failing_tables:
            raise StoreError("connection reset by peer", table=table)
        if table in self.ignored_tables:
            return []
        return await super().update(table, filters, patch)

    async def delete(self, table, filters):
        if table in self.failing_tables:
            raise StoreError("connection reset by peer", table=table)
        return await super().delete(table, filters)


@pytest_asyncio.fixture
async def store():
    """Create an initialized in-memory SQL store."""
    store = FlakyStore("sqlite:///:memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def config():
    """Configuration for tests; soft deletes run client-side."""
    return ClinicConfig(
        environment="testing",
        timezone="UTC",
        soft_delete_strategy=DeletionStrategy.CLIENT,
    )


@pytest.fixture
def make_patient(store):
    """Factory inserting a patient row."""

    async def _make(principal: str = PRINCIPAL, **fields: Any) -> Dict[str, Any]:
        row = {
            "user_id": principal,
            "name": "Asha Kumar",
            "dob": date(1990, 5, 1),
            "gender": "Female",
            "contact_phone": "+91 98400 12345",
            "contact_email": "asha@example.com",
            "address": "12 Beach Road, Chennai",
            "preferred_language": "Tamil",
            "preferred_contact_method": "SMS",
        }
        row.update(fields)
        return await store.insert(PATIENTS_TABLE, row)

    return _make


@pytest.fixture
def add_clinical_records(store):
    """Factory inserting one row per dependent clinical table."""

    async def _add(patient_id: str, principal: str = PRINCIPAL) -> None:
        rows = {
            "medical_history": {"condition": "Hypertension"},
            "medications": {"name": "Amlodipine", "dosage": "5 mg"},
            "allergies": {"allergen": "Penicillin", "severity": "high"},
            "insurance_billing": {"provider": "Star Health", "policy_number": "SH-1"},
            "patient_documents": {
                "file_name": "xray.png",
                "storage_path": f"{patient_id}/xray.png",
            },
        }
        for table, row in rows.items():
            await store.insert(table, {"patient_id": patient_id, "user_id": principal, **row})

    return _add


@pytest.fixture
def dependent_rows(store):
    """Reader returning the dependent rows of a patient per table."""

    async def _read(patient_id: str) -> Dict[str, List[Dict[str, Any]]]:
        return {
            table: (await store.select(table, [eq("patient_id", patient_id)])).rows
            for table in DEPENDENT_TABLES
        }

    return _read
