"""Exceptions for patient search operations."""

from ..exceptions import ClinicRecordsError


class SearchError(ClinicRecordsError):
    """Raised when a patient query fails at any stage."""

    def __init__(self, action: str, cause: str):
        self.action = action
        self.cause = cause
        super().__init__(f"Failed to {action}: {cause}")
