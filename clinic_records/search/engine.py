"""
Patient search engine.

Builds the predicate list for a patient query from SearchFilters and runs
it against the record store with pagination and a total count.
"""

import asyncio
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytz
from dateutil.relativedelta import relativedelta

from ..config import ClinicConfig, get_config
from ..store import (
    APPOINTMENTS_TABLE,
    PATIENTS_TABLE,
    Condition,
    Op,
    Ordering,
    Predicate,
    RecordStore,
    StoreError,
    Window,
    any_of,
    eq,
    escape_like,
    gte,
    ilike,
    in_,
    is_null,
    lte,
)
from .exceptions import SearchError
from .filters import AgeRange, DateRange, SearchFilters, SortOrder
from .models import Patient, PatientStatistics, SearchResult

logger = logging.getLogger(__name__)

# RFC 4122 shaped identifier, versions 1-5
UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

TEXT_SEARCH_COLUMNS = ("name", "contact_phone", "contact_email")

STATISTICS_APPOINTMENT_DAYS = 7


def is_patient_id(term: str) -> bool:
    return bool(UUID_PATTERN.match(term.strip()))


def active_patients(principal_id: str) -> List[Predicate]:
    """Patients of a principal that are not soft deleted."""
    return [
        eq("user_id", principal_id),
        any_of(is_null("is_deleted"), eq("is_deleted", False)),
    ]


def birth_date_bounds(
    age_range: AgeRange, today: date
) -> Tuple[Optional[date], Optional[date]]:
    """
    Translate an age range into inclusive date of birth bounds.

    The earliest birth date is today shifted back by max + 1 years, the
    latest by min years. On Feb 29 the shift lands on Feb 28 in non-leap
    years.

    Returns:
        Tuple of (earliest, latest); either may be None
    """
    earliest = None
    latest = None
    if age_range.max is not None:
        earliest = today - relativedelta(years=age_range.max + 1)
    if age_range.min is not None:
        latest = today - relativedelta(years=age_range.min)
    return earliest, latest


def _as_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(pytz.utc).replace(tzinfo=None)
    return value


def created_at_bounds(date_range: DateRange) -> List[Predicate]:
    """Predicates on created_at; a date-only end covers the whole day."""
    predicates: List[Predicate] = []
    start = date_range.start
    if start is not None:
        if not isinstance(start, datetime):
            start = datetime.combine(start, time.min)
        predicates.append(gte("created_at", _as_utc_naive(start)))

    end = date_range.end
    if end is not None:
        if isinstance(end, datetime):
            predicates.append(lte("created_at", _as_utc_naive(end)))
        else:
            next_day = datetime.combine(end + timedelta(days=1), time.min)
            predicates.append(Condition("created_at", Op.LT, next_day))
    return predicates


def search_predicates(
    principal_id: str, filters: SearchFilters, today: date
) -> List[Predicate]:
    """Build the AND-ed predicate list of a patient search."""
    predicates = active_patients(principal_id)

    term = (filters.search_term or "").strip()
    if term:
        if is_patient_id(term):
            predicates.append(eq("id", term.lower()))
        else:
            pattern = f"%{escape_like(term)}%"
            predicates.append(any_of(*(ilike(column, pattern) for column in TEXT_SEARCH_COLUMNS)))

    if filters.gender:
        predicates.append(eq("gender", filters.gender))

    if filters.preferred_contact_method:
        predicates.append(
            eq("preferred_contact_method", filters.preferred_contact_method.value)
        )

    if filters.age_range is not None:
        earliest, latest = birth_date_bounds(filters.age_range, today)
        if earliest is not None:
            predicates.append(gte("dob", earliest))
        if latest is not None:
            predicates.append(lte("dob", latest))

    if filters.date_range is not None:
        predicates.extend(created_at_bounds(filters.date_range))

    return predicates


class PatientSearchEngine:
    """
    Read side of the patient records.

    Every query is scoped to the owning principal and never returns soft
    deleted patients.

    Example:
        >>> engine = PatientSearchEngine(store)
        >>> page = await engine.search_patients("dr-house", {"searchTerm": "kumar"})
        >>> page.total_count, page.has_more
    """

    def __init__(
        self,
        store: RecordStore,
        config: Optional[ClinicConfig] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        """
        Initialize the search engine.

        Args:
            store: Record store holding the patients and appointments tables
            config: Configuration, defaults to the global configuration
            today: Clock returning the current clinic date, for tests
        """
        self.store = store
        self.config = config or get_config()
        self._today = today

    def today(self) -> date:
        """Current date in the clinic timezone."""
        if self._today is not None:
            return self._today()
        return datetime.now(pytz.timezone(self.config.timezone)).date()

    def _month_start_utc(self, today: date) -> datetime:
        clinic_tz = pytz.timezone(self.config.timezone)
        local_midnight = clinic_tz.localize(datetime(today.year, today.month, 1))
        return _as_utc_naive(local_midnight)

    def _page_size(self, filters: SearchFilters) -> int:
        limit = filters.limit or self.config.default_page_size
        if limit > self.config.max_page_size:
            raise ValueError(
                f"limit {limit} exceeds the maximum page size {self.config.max_page_size}"
            )
        return limit

    async def search_patients(
        self,
        principal_id: str,
        filters: Optional[Union[SearchFilters, Dict[str, Any]]] = None,
    ) -> SearchResult:
        """
        Search the active patients of a principal.

        Args:
            principal_id: Owning principal
            filters: SearchFilters or a mapping of filter options

        Returns:
            One page of patients with the total count and a has-more flag

        Raises:
            ValueError: If the filters are invalid
            SearchError: If the query fails
        """
        if filters is None:
            filters = SearchFilters()
        elif not isinstance(filters, SearchFilters):
            filters = SearchFilters.model_validate(filters)

        limit = self._page_size(filters)
        predicates = search_predicates(principal_id, filters, self.today())
        ordering = Ordering(
            filters.sort_by.value, descending=filters.sort_order == SortOrder.DESC
        )

        try:
            result = await self.store.select(
                PATIENTS_TABLE,
                predicates,
                order_by=[ordering, Ordering("id")],
                window=Window(filters.offset, limit),
                count=True,
            )
            patients = [Patient.from_row(row) for row in result.rows]
        except (StoreError, ValueError) as e:
            logger.error(f"Patient search error: {e}")
            raise SearchError("search patients", str(e)) from e

        total_count = result.count or 0
        return SearchResult(
            patients=patients,
            total_count=total_count,
            has_more=filters.offset + limit < total_count,
        )

    async def get_patient_by_id(
        self, patient_id: str, principal_id: str
    ) -> Optional[Patient]:
        """
        Get an active patient by id.

        Returns:
            The patient, or None when it does not exist or is soft deleted
        """
        try:
            result = await self.store.select(
                PATIENTS_TABLE,
                [eq("id", patient_id)] + active_patients(principal_id),
                window=Window(0, 1),
            )
            if not result.rows:
                return None
            return Patient.from_row(result.rows[0])
        except (StoreError, ValueError) as e:
            logger.error(f"Get patient by ID error: {e}")
            raise SearchError("get patient", str(e)) from e

    async def get_patients_with_upcoming_appointments(
        self, principal_id: str, days: Optional[int] = None
    ) -> List[Patient]:
        """
        Get active patients with an appointment between today and today + days.

        Args:
            principal_id: Owning principal
            days: Window length, config default if unset

        Returns:
            Distinct patients ordered by name
        """
        if days is None:
            days = self.config.upcoming_appointment_days
        today = self.today()

        try:
            appointments = await self.store.select(
                APPOINTMENTS_TABLE,
                [
                    eq("user_id", principal_id),
                    gte("date", today),
                    lte("date", today + timedelta(days=days)),
                ],
            )
            patient_ids = sorted({row["patient_id"] for row in appointments.rows})
            if not patient_ids:
                return []

            result = await self.store.select(
                PATIENTS_TABLE,
                active_patients(principal_id) + [in_("id", patient_ids)],
                order_by=[Ordering("name")],
            )
            return [Patient.from_row(row) for row in result.rows]
        except (StoreError, ValueError) as e:
            logger.error(f"Get patients with upcoming appointments error: {e}")
            raise SearchError("get patients with upcoming appointments", str(e)) from e

    async def get_patient_statistics(self, principal_id: str) -> PatientStatistics:
        """
        Count active patients, patients created this month and upcoming appointments.

        The three counts are independent queries run concurrently.
        """
        today = self.today()
        month_start = self._month_start_utc(today)

        try:
            total, new_this_month, upcoming = await asyncio.gather(
                self.store.count(PATIENTS_TABLE, active_patients(principal_id)),
                self.store.count(
                    PATIENTS_TABLE,
                    active_patients(principal_id) + [gte("created_at", month_start)],
                ),
                self.store.count(
                    APPOINTMENTS_TABLE,
                    [
                        eq("user_id", principal_id),
                        gte("date", today),
                        lte("date", today + timedelta(days=STATISTICS_APPOINTMENT_DAYS)),
                    ],
                ),
            )
        except StoreError as e:
            logger.error(f"Get patient statistics error: {e}")
            raise SearchError("get patient statistics", str(e)) from e

        return PatientStatistics(
            total_patients=total,
            new_patients_this_month=new_this_month,
            upcoming_appointments=upcoming,
        )
