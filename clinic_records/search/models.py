"""Client-facing patient models returned by the search engine."""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Storage column -> client field
_RENAMED_COLUMNS = {
    "contact_phone": "phone",
    "contact_email": "email",
}


class _ClientModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Patient(_ClientModel):
    """Patient as presented to clients; soft delete metadata is not exposed."""

    id: str
    user_id: str
    name: str
    dob: Optional[date] = None
    gender: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    preferred_language: Optional[str] = None
    preferred_contact_method: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Patient":
        """Map a patients row to the client shape."""
        data = {_RENAMED_COLUMNS.get(key, key): value for key, value in row.items()}
        fields = cls.model_fields
        return cls.model_validate({key: value for key, value in data.items() if key in fields})


class SearchResult(_ClientModel):
    patients: List[Patient] = Field(default_factory=list)
    total_count: int = 0
    has_more: bool = False


class PatientStatistics(_ClientModel):
    """Dashboard counts for one principal."""

    total_patients: int = 0
    new_patients_this_month: int = 0
    upcoming_appointments: int = 0
