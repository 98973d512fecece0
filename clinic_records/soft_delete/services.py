"""
Service layer for patient deletion.

Provides soft delete with backup, restoration from a backup, listing of
deleted patients and permanent deletion.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from ..audit_trail import AuditOperation, PatientAuditTrail, diff_fields
from ..config import ClinicConfig, DeletionStrategy, get_config
from ..store import (
    APPOINTMENTS_TABLE,
    DELETED_PATIENTS_TABLE,
    DEPENDENT_TABLES,
    PATIENTS_TABLE,
    DocumentStorage,
    Ordering,
    ProcedureUnavailableError,
    RecordStore,
    StoreError,
    eq,
    utcnow,
)
from .cascade import (
    active_triple,
    build_backup_row,
    cascade_update,
    deleted_triple,
    deletion_audit_entry,
    earlier_backups,
    find_divergent_tables,
    owned_by_patient,
    patient_owner,
    split_results,
)
from .exceptions import (
    AlreadyDeletedError,
    BackupFetchError,
    DeletionFailedError,
    NotFoundError,
    PartialCascadeFailure,
    RestoreFailedError,
    RestoreNotAllowedError,
)
from .models import DeletedPatientBackup, DeletionRequest, DeletionResult, RestoreResult
from .procedures import SOFT_DELETE_PROCEDURE

logger = logging.getLogger(__name__)

PermissionChecker = Callable[[str, str, str], bool]


class PatientDeletionService:
    """
    Service for deleting and restoring patients.

    A soft delete hides the patient and its clinical records, keeps a
    snapshot in deleted_patients and writes a DELETE audit entry. A restore
    reverses the flags once per snapshot. A permanent delete removes the
    rows for good.

    Example:
        >>> service = PatientDeletionService(store)
        >>> result = await service.soft_delete_patient(patient_id, "dr-house", "duplicate")
        >>> await service.restore_patient(result.backup_id, "dr-house")
    """

    def __init__(
        self,
        store: RecordStore,
        audit_trail: Optional[PatientAuditTrail] = None,
        config: Optional[ClinicConfig] = None,
        document_storage: Optional[DocumentStorage] = None,
        permission_checker: Optional[PermissionChecker] = None,
    ):
        """
        Initialize the deletion service.

        Args:
            store: Record store holding the patient tables
            audit_trail: Audit trail to write entries to
            config: Configuration, defaults to the global configuration
            document_storage: Storage of uploaded documents, cleaned on purge
            permission_checker: Optional function (principal_id, action, entity) -> bool

        Raises:
            ProcedureUnavailableError: If the procedure strategy is forced but
                the backend does not provide the procedure
        """
        self.store = store
        self.audit_trail = audit_trail or PatientAuditTrail(store)
        self.config = config or get_config()
        self.document_storage = document_storage
        self.permission_checker = permission_checker
        self.use_procedure = self._resolve_strategy()

    def _resolve_strategy(self) -> bool:
        strategy = self.config.soft_delete_strategy
        if strategy == DeletionStrategy.CLIENT:
            return False

        available = self.store.supports_procedure(SOFT_DELETE_PROCEDURE)
        if strategy == DeletionStrategy.PROCEDURE and not available:
            raise ProcedureUnavailableError(SOFT_DELETE_PROCEDURE)
        return available

    def _check_permission(self, principal_id: str, action: str) -> None:
        if self.permission_checker and not self.permission_checker(
            principal_id, action, "Patient"
        ):
            raise PermissionError(
                f"User {principal_id} does not have permission to {action} patients"
            )

    async def _fetch_patient(self, patient_id: str, principal_id: str) -> Dict[str, Any]:
        try:
            rows = (
                await self.store.select(PATIENTS_TABLE, patient_owner(patient_id, principal_id))
            ).rows
        except StoreError as e:
            logger.error(f"Soft delete error: {e}")
            raise DeletionFailedError(str(e), patient_id) from e

        if not rows:
            raise NotFoundError("Patient", patient_id)
        return rows[0]

    async def _discard_backup(self, backup_id: str) -> None:
        try:
            await self.store.delete(DELETED_PATIENTS_TABLE, [eq("id", backup_id)])
        except StoreError as e:
            logger.error(f"Could not discard backup {backup_id}: {e}")
            await self.store.update(
                DELETED_PATIENTS_TABLE, [eq("id", backup_id)], {"can_restore": False}
            )

    async def soft_delete_patient(
        self, patient_id: str, principal_id: str, reason: Optional[str] = None
    ) -> DeletionResult:
        """
        Soft delete a patient and its dependent records.

        Args:
            patient_id: Patient to delete
            principal_id: Owning principal
            reason: Optional free-text reason stored with the backup

        Returns:
            Deletion details including the backup id

        Raises:
            ValueError: If the request is invalid
            NotFoundError: If the patient does not exist under the principal
            AlreadyDeletedError: If the patient is already soft deleted
            DeletionFailedError: If the store fails
            PartialCascadeFailure: If some dependent tables were not updated
        """
        request = DeletionRequest(patient_id=patient_id, principal_id=principal_id, reason=reason)
        if request.reason and len(request.reason) > self.config.deletion_reason_max_length:
            raise ValueError(
                f"Deletion reason exceeds {self.config.deletion_reason_max_length} characters"
            )
        self._check_permission(principal_id, "delete")

        patient = await self._fetch_patient(patient_id, principal_id)
        if patient.get("is_deleted"):
            raise AlreadyDeletedError(patient_id)

        if self.use_procedure:
            result = await self._soft_delete_atomic(request)
        else:
            result = await self._soft_delete_client_side(request, patient)

        logger.info(
            f"Patient {patient_id} soft deleted by {principal_id} "
            f"(backup {result.backup_id}, atomic={result.atomic})"
        )
        return result

    async def _soft_delete_atomic(self, request: DeletionRequest) -> DeletionResult:
        try:
            outcome = await self.store.call_procedure(
                SOFT_DELETE_PROCEDURE,
                {
                    "patient_id_param": request.patient_id,
                    "user_id_param": request.principal_id,
                    "deletion_reason_param": request.reason,
                },
            )
        except StoreError as e:
            logger.error(f"Soft delete error: {e}")
            raise DeletionFailedError(str(e), request.patient_id) from e

        if isinstance(outcome, dict):
            return DeletionResult(
                patient_id=request.patient_id,
                backup_id=outcome.get("backup_id"),
                deleted_at=outcome.get("deleted_at") or utcnow(),
                atomic=True,
                cascaded=outcome.get("cascaded") or {},
            )

        # Server-side functions return the backup id, if anything
        return DeletionResult(
            patient_id=request.patient_id,
            backup_id=str(outcome) if outcome is not None else None,
            deleted_at=utcnow(),
            atomic=True,
        )

    async def _soft_delete_client_side(
        self, request: DeletionRequest, patient: Dict[str, Any]
    ) -> DeletionResult:
        patient_id = request.patient_id
        principal_id = request.principal_id
        deleted_at = utcnow()

        try:
            backup = await self.store.insert(
                DELETED_PATIENTS_TABLE,
                build_backup_row(patient, principal_id, request.reason, deleted_at),
            )
        except StoreError as e:
            logger.error(f"Soft delete error: {e}")
            raise DeletionFailedError(str(e), patient_id) from e

        try:
            updated = await self.store.update(
                PATIENTS_TABLE,
                patient_owner(patient_id, principal_id),
                deleted_triple(principal_id, deleted_at),
            )
        except StoreError as e:
            logger.error(f"Soft delete error: {e}")
            await self._discard_backup(backup["id"])
            raise DeletionFailedError(str(e), patient_id) from e

        if not updated:
            await self._discard_backup(backup["id"])
            raise NotFoundError("Patient", patient_id)

        cascaded, failures = await cascade_update(
            self.store, patient_id, principal_id, deleted_triple(principal_id, deleted_at)
        )
        try:
            await self.store.update(
                DELETED_PATIENTS_TABLE,
                earlier_backups(patient_id, principal_id, backup["id"]),
                {"can_restore": False},
            )
        except StoreError as e:
            failures[DELETED_PATIENTS_TABLE] = str(e)
        if self.config.verify_cascade:
            divergent = await find_divergent_tables(
                self.store, patient_id, principal_id, expect_deleted=True
            )
            for table, problem in divergent.items():
                failures.setdefault(table, problem)

        try:
            await self.audit_trail.record(
                **deletion_audit_entry(patient, principal_id, deleted_at, backup["id"])
            )
        except StoreError as e:
            logger.error(f"Soft delete audit error: {e}")
            raise DeletionFailedError(
                f"patient deleted but audit entry not written: {e}", patient_id
            ) from e

        if failures:
            logger.warning(
                f"Patient {patient_id} soft delete left dependent tables "
                f"behind: {sorted(failures)}"
            )
            raise PartialCascadeFailure("soft delete", patient_id, failures)

        return DeletionResult(
            patient_id=patient_id,
            backup_id=backup["id"],
            deleted_at=deleted_at,
            atomic=False,
            cascaded=cascaded,
        )

    async def restore_patient(self, backup_id: str, principal_id: str) -> RestoreResult:
        """
        Restore a soft deleted patient from its backup.

        Each backup can be used once. If a dependent table cannot be restored
        the backup stays usable so the restore can be retried.

        Args:
            backup_id: Id of the deleted_patients row
            principal_id: Owning principal

        Returns:
            Restore details

        Raises:
            NotFoundError: If the backup or the patient does not exist
            RestoreNotAllowedError: If the backup was already used
            RestoreFailedError: If the store fails
            PartialCascadeFailure: If some dependent tables were not restored
        """
        self._check_permission(principal_id, "restore")
        backup_owner = [eq("id", backup_id), eq("user_id", principal_id)]

        try:
            rows = (await self.store.select(DELETED_PATIENTS_TABLE, backup_owner)).rows
        except StoreError as e:
            logger.error(f"Restore error: {e}")
            raise RestoreFailedError(str(e), backup_id) from e

        if not rows:
            raise NotFoundError("Deleted patient", backup_id)
        backup = DeletedPatientBackup.from_row(rows[0])
        if not backup.can_restore:
            raise RestoreNotAllowedError(backup_id)
        if not backup.verify_snapshot():
            logger.warning(f"Snapshot checksum mismatch on deleted patient {backup_id}")

        patient_id = backup.original_patient_id
        try:
            restored_rows = await self.store.update(
                PATIENTS_TABLE, patient_owner(patient_id, principal_id), active_triple()
            )
        except StoreError as e:
            logger.error(f"Restore error: {e}")
            raise RestoreFailedError(str(e), backup_id) from e

        if not restored_rows:
            raise NotFoundError("Patient", patient_id)

        restored, failures = await cascade_update(
            self.store, patient_id, principal_id, active_triple()
        )
        if self.config.verify_cascade:
            divergent = await find_divergent_tables(
                self.store, patient_id, principal_id, expect_deleted=False
            )
            for table, problem in divergent.items():
                failures.setdefault(table, problem)
        if failures:
            logger.warning(
                f"Patient {patient_id} restore left dependent tables "
                f"behind: {sorted(failures)}"
            )
            raise PartialCascadeFailure("restore", patient_id, failures)

        try:
            consumed = await self.store.update(
                DELETED_PATIENTS_TABLE,
                backup_owner + [eq("can_restore", True)],
                {"can_restore": False},
            )
            if not consumed:
                raise RestoreNotAllowedError(backup_id, "backup was used concurrently")

            before = deleted_triple(backup.deleted_by, backup.deleted_at)
            entry = await self.audit_trail.record(
                principal_id=principal_id,
                patient_id=patient_id,
                operation=AuditOperation.RESTORE,
                table_name=PATIENTS_TABLE,
                old_values=before,
                new_values={**active_triple(), "restored_from": backup_id},
                changed_fields=diff_fields(before, active_triple()),
            )
        except StoreError as e:
            logger.error(f"Restore error: {e}")
            raise RestoreFailedError(str(e), backup_id) from e

        logger.info(f"Patient {patient_id} restored from {backup_id} by {principal_id}")
        return RestoreResult(
            patient_id=patient_id,
            backup_id=backup_id,
            restored=restored,
            audit_entry_id=entry.id,
        )

    async def get_deleted_patients(self, principal_id: str) -> List[DeletedPatientBackup]:
        """
        List the deleted patient backups of a principal, newest first.

        Raises:
            BackupFetchError: If the backups cannot be read
        """
        try:
            result = await self.store.select(
                DELETED_PATIENTS_TABLE,
                [eq("user_id", principal_id)],
                order_by=[Ordering("deleted_at", descending=True)],
            )
            return [DeletedPatientBackup.from_row(row) for row in result.rows]
        except (StoreError, ValueError) as e:
            logger.error(f"Get deleted patients error: {e}")
            raise BackupFetchError(str(e)) from e

    async def permanently_delete_patient(
        self, patient_id: str, principal_id: str
    ) -> Dict[str, int]:
        """
        Permanently delete a patient, its records, appointments and backups.

        Irreversible. Audit trail entries are kept.

        Args:
            patient_id: Patient to remove
            principal_id: Owning principal

        Returns:
            Number of rows removed per table

        Raises:
            NotFoundError: If the patient does not exist under the principal
            DeletionFailedError: If the store fails
        """
        self._check_permission(principal_id, "purge")
        owned = owned_by_patient(patient_id, principal_id)

        try:
            rows = (
                await self.store.select(PATIENTS_TABLE, patient_owner(patient_id, principal_id))
            ).rows
            documents: List[Dict[str, Any]] = []
            if rows and self.document_storage is not None:
                documents = (await self.store.select("patient_documents", owned)).rows
        except StoreError as e:
            logger.error(f"Permanent delete error: {e}")
            raise DeletionFailedError(str(e), patient_id, permanent=True) from e

        if not rows:
            raise NotFoundError("Patient", patient_id)

        tables = DEPENDENT_TABLES + (APPOINTMENTS_TABLE,)
        results = await asyncio.gather(
            *(self.store.delete(table, owned) for table in tables),
            return_exceptions=True,
        )
        removed, failures = split_results(tables, results)
        if failures:
            cause = "; ".join(f"{table}: {error}" for table, error in sorted(failures.items()))
            logger.error(f"Permanent delete error: {cause}")
            raise DeletionFailedError(cause, patient_id, permanent=True)

        try:
            removed[PATIENTS_TABLE] = await self.store.delete(
                PATIENTS_TABLE, patient_owner(patient_id, principal_id)
            )
            removed[DELETED_PATIENTS_TABLE] = await self.store.delete(
                DELETED_PATIENTS_TABLE,
                [eq("original_patient_id", patient_id), eq("user_id", principal_id)],
            )
        except StoreError as e:
            logger.error(f"Permanent delete error: {e}")
            raise DeletionFailedError(str(e), patient_id, permanent=True) from e

        paths = [doc["storage_path"] for doc in documents if doc.get("storage_path")]
        if paths and self.document_storage is not None:
            try:
                await self.document_storage.remove(paths)
            except Exception as e:
                logger.warning(
                    f"Document cleanup for patient {patient_id} failed, "
                    f"{len(paths)} files left in storage: {e}"
                )

        logger.info(f"Patient {patient_id} permanently deleted by {principal_id}")
        return removed
