"""
Clinic Records - patient record lifecycle for clinic management systems.

Keeps patient records and their clinical data recoverable and traceable
while letting clinicians find the patients they need.

Key Features
------------
* **Soft Delete**: Patients and their clinical records are hidden, not lost,
  with a backup snapshot for each deletion
* **Restore**: A deleted patient can be brought back once per snapshot
* **Audit Trail**: Append-only history of deletions and restorations
* **Search**: Paginated patient search by text, identifier, demographics,
  age range and creation date
* **Record Store**: SQLAlchemy backend for PostgreSQL and SQLite

Quick Start
-----------
>>> from clinic_records import ClinicConfig, PatientRecords
>>>
>>> records = await PatientRecords.open(ClinicConfig(database_url="sqlite:///clinic.db"))
>>> page = await records.search_patients("dr-house", {"searchTerm": "kumar"})
>>> result = await records.soft_delete_patient(page.patients[0].id, "dr-house", "duplicate")
>>> await records.restore_patient(result.backup_id, "dr-house")

Command Line
------------
The ``clinic`` command exposes the same operations; see ``clinic --help``.
"""

__version__ = "1.0.0"

from .audit_trail import AuditLogEntry, AuditOperation, PatientAuditTrail
from .config import ClinicConfig, DeletionStrategy, configure, get_config, set_config
from .exceptions import ClinicRecordsError
from .records import PatientRecords
from .search import PatientSearchEngine, SearchFilters, SearchResult
from .soft_delete import PatientDeletionService
from .store import RecordStore, SQLRecordStore

__all__ = [
    # Facade
    "PatientRecords",
    # Engines
    "PatientDeletionService",
    "PatientSearchEngine",
    "PatientAuditTrail",
    # Models
    "AuditLogEntry",
    "AuditOperation",
    "SearchFilters",
    "SearchResult",
    # Store
    "RecordStore",
    "SQLRecordStore",
    # Configuration
    "ClinicConfig",
    "DeletionStrategy",
    "get_config",
    "set_config",
    "configure",
    # Exceptions
    "ClinicRecordsError",
]
