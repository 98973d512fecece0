"""
Patient records facade.

Wires the record store, audit trail, deletion service and search engine
together from one configuration.
"""

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Union

from .audit_trail import AuditLogEntry, PatientAuditTrail
from .config import ClinicConfig, get_config
from .search import Patient, PatientSearchEngine, PatientStatistics, SearchFilters, SearchResult
from .soft_delete import (
    DeletedPatientBackup,
    DeletionResult,
    PatientDeletionService,
    RestoreResult,
    register_procedures,
)
from .soft_delete.services import PermissionChecker
from .store import DocumentStorage, LocalDocumentStorage, RecordStore, SQLRecordStore

logger = logging.getLogger(__name__)


class PatientRecords:
    """
    Entry point to the patient record operations of one clinic database.

    Example:
        >>> records = await PatientRecords.open(ClinicConfig(database_url="sqlite://"))
        >>> page = await records.search_patients("dr-house", {"gender": "Female"})
        >>> await records.close()
    """

    def __init__(
        self,
        store: RecordStore,
        config: Optional[ClinicConfig] = None,
        document_storage: Optional[DocumentStorage] = None,
        permission_checker: Optional[PermissionChecker] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        self.store = store
        self.config = config or get_config()
        self.audit_trail = PatientAuditTrail(store)
        self.deletion = PatientDeletionService(
            store,
            audit_trail=self.audit_trail,
            config=self.config,
            document_storage=document_storage,
            permission_checker=permission_checker,
        )
        self.search = PatientSearchEngine(store, config=self.config, today=today)

    @classmethod
    async def open(cls, config: Optional[ClinicConfig] = None, **kwargs: Any) -> "PatientRecords":
        """
        Connect to the configured database and create missing tables.

        Args:
            config: Configuration, defaults to the global configuration
            **kwargs: Passed on to the constructor

        Returns:
            Ready to use facade
        """
        config = config or get_config()
        store = SQLRecordStore(**config.get_store_config())
        await store.initialize()
        register_procedures(store)

        if "document_storage" not in kwargs and config.document_storage_path:
            kwargs["document_storage"] = LocalDocumentStorage(config.document_storage_path)

        logger.debug(f"Opened patient records for {config.application_name} ({config.environment})")
        return cls(store, config=config, **kwargs)

    async def close(self) -> None:
        await self.store.close()

    # Soft delete and restore

    async def soft_delete_patient(
        self, patient_id: str, principal_id: str, reason: Optional[str] = None
    ) -> DeletionResult:
        return await self.deletion.soft_delete_patient(patient_id, principal_id, reason)

    async def restore_patient(self, backup_id: str, principal_id: str) -> RestoreResult:
        return await self.deletion.restore_patient(backup_id, principal_id)

    async def permanently_delete_patient(
        self, patient_id: str, principal_id: str
    ) -> Dict[str, int]:
        return await self.deletion.permanently_delete_patient(patient_id, principal_id)

    async def get_deleted_patients(self, principal_id: str) -> List[DeletedPatientBackup]:
        return await self.deletion.get_deleted_patients(principal_id)

    # Audit trail

    async def get_patient_audit_trail(
        self, patient_id: str, principal_id: str
    ) -> List[AuditLogEntry]:
        return await self.audit_trail.get_patient_audit_trail(patient_id, principal_id)

    # Search

    async def search_patients(
        self,
        principal_id: str,
        filters: Optional[Union[SearchFilters, Dict[str, Any]]] = None,
    ) -> SearchResult:
        return await self.search.search_patients(principal_id, filters)

    async def get_patient_by_id(self, patient_id: str, principal_id: str) -> Optional[Patient]:
        return await self.search.get_patient_by_id(patient_id, principal_id)

    async def get_patients_with_upcoming_appointments(
        self, principal_id: str, days: Optional[int] = None
    ) -> List[Patient]:
        return await self.search.get_patients_with_upcoming_appointments(principal_id, days)

    async def get_patient_statistics(self, principal_id: str) -> PatientStatistics:
        return await self.search.get_patient_statistics(principal_id)
