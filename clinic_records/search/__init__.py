"""
Search Module - patient search and filtering.

Provides the filter models, the client-facing patient shape, and the engine
that turns filters into paginated store queries.
"""

from .engine import (
    PatientSearchEngine,
    birth_date_bounds,
    is_patient_id,
    search_predicates,
)
from .exceptions import SearchError
from .filters import AgeRange, ContactMethod, DateRange, SearchFilters, SortBy, SortOrder
from .models import Patient, PatientStatistics, SearchResult

__all__ = [
    # Engine
    "PatientSearchEngine",
    "search_predicates",
    "birth_date_bounds",
    "is_patient_id",
    # Filters
    "SearchFilters",
    "AgeRange",
    "DateRange",
    "SortBy",
    "SortOrder",
    "ContactMethod",
    # Models
    "Patient",
    "SearchResult",
    "PatientStatistics",
    # Exceptions
    "SearchError",
]
