"""
Search filter models.

Filters accept snake_case field names as well as the camelCase keys used by
web clients (searchTerm, ageRange, sortBy, ...).
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class SortBy(str, Enum):
    NAME = "name"
    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ContactMethod(str, Enum):
    """Preferred channel for reminders."""

    EMAIL = "Email"
    SMS = "SMS"
    NONE = "None"


class _FilterModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgeRange(_FilterModel):
    """Inclusive patient age bounds in whole years."""

    min: Optional[int] = Field(None, ge=0, le=150)
    max: Optional[int] = Field(None, ge=0, le=150)

    @model_validator(mode="after")
    def validate_order(self) -> "AgeRange":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("ageRange.min cannot exceed ageRange.max")
        return self


class DateRange(_FilterModel):
    """
    Bounds on the record creation timestamp.

    A plain date as ``end`` covers that whole day.
    """

    start: Optional[Union[datetime, date]] = None
    end: Optional[Union[datetime, date]] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def parse_bound(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
            if len(v) == 10:
                return date.fromisoformat(v)
            return date_parser.isoparse(v)
        return v


class SearchFilters(_FilterModel):
    """
    Structured patient search description.

    Example:
        >>> SearchFilters.model_validate(
        ...     {"searchTerm": "kumar", "ageRange": {"min": 18}, "limit": 20}
        ... )
    """

    search_term: Optional[str] = None
    gender: Optional[str] = None
    preferred_contact_method: Optional[ContactMethod] = None
    age_range: Optional[AgeRange] = None
    date_range: Optional[DateRange] = None
    sort_by: SortBy = SortBy.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC
    limit: Optional[int] = Field(None, gt=0, description="Page size, config default if unset")
    offset: int = Field(0, ge=0)

    @field_validator("search_term", "gender", "preferred_contact_method", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v
