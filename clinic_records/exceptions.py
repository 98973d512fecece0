"""Base exception for clinic records operations."""

from typing import Optional


class ClinicRecordsError(Exception):
    """Base exception for every error raised to callers of the engines."""

    def __init__(self, message: str, entity_id: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message)
