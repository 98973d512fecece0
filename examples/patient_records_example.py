#!/usr/bin/env python3
"""
Patient Records Example - Clinic Records

Demonstrates the patient lifecycle against an in-memory database:
- Searching active patients
- Soft deleting a patient with its clinical records
- Reading the audit trail
- Restoring the patient from its backup
"""

import asyncio
from datetime import date

from clinic_records import ClinicConfig, PatientRecords
from clinic_records.store import PATIENTS_TABLE

PRINCIPAL = "dr-house"


async def main() -> None:
    records = await PatientRecords.open(
        ClinicConfig(database_url="sqlite://", timezone="Asia/Kolkata")
    )

    try:
        print("Clinic Records - Patient Lifecycle")
        print("=" * 50)

        patient = await records.store.insert(
            PATIENTS_TABLE,
            {
                "user_id": PRINCIPAL,
                "name": "Asha Kumar",
                "dob": date(1990, 5, 1),
                "gender": "Female",
                "contact_phone": "+91 98400 12345",
                "contact_email": "asha@example.com",
                "preferred_contact_method": "SMS",
            },
        )
        await records.store.insert(
            "allergies",
            {"patient_id": patient["id"], "user_id": PRINCIPAL, "allergen": "Penicillin"},
        )

        # 1. Search
        page = await records.search_patients(
            PRINCIPAL, {"searchTerm": "kumar", "ageRange": {"min": 18}}
        )
        print(f"\n1. Search found {page.total_count} patient(s)")
        for found in page.patients:
            print(f"   {found.name} <{found.email}>")

        # 2. Soft delete
        deletion = await records.soft_delete_patient(patient["id"], PRINCIPAL, "Duplicate record")
        print(f"\n2. Deleted patient, backup {deletion.backup_id} (atomic={deletion.atomic})")

        page = await records.search_patients(PRINCIPAL, {"searchTerm": "kumar"})
        print(f"   Search now finds {page.total_count} patient(s)")

        # 3. Audit trail
        for entry in await records.get_patient_audit_trail(patient["id"], PRINCIPAL):
            print(f"\n3. {entry.to_log_format()}")

        # 4. Restore
        restored = await records.restore_patient(deletion.backup_id, PRINCIPAL)
        print(f"\n4. Restored patient {restored.patient_id}")

        stats = await records.get_patient_statistics(PRINCIPAL)
        print(f"   Active patients: {stats.total_patients}")
    finally:
        await records.close()


if __name__ == "__main__":
    asyncio.run(main())
