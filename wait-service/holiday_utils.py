"""
Holiday lookup and service-day classification

The classifier consults a holiday lookup first, then falls back to the day
of week. The default lookup answers "not a holiday" for every date: no
holiday calendar ships with the service. A real calendar can be supplied as
a {YYYY-MM-DD: name} map through HolidayMapLookup without changing the
classifier.
"""

from enum import Enum
from typing import Dict, Optional, Protocol

from date_utils import day_of_week, parse_date_key


class ServiceDayType(str, Enum):
    WEEKDAY = "WEEKDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"
    HOLIDAY = "HOLIDAY"


class HolidayLookup(Protocol):
    def is_holiday(self, date_key: str) -> bool:
        ...


class NoHolidays:
    """Default lookup: every date is a regular day."""

    def is_holiday(self, date_key: str) -> bool:
        return False


class HolidayMapLookup:
    """
    Lookup backed by a caller-supplied calendar.

    Args:
        holiday_map: Dictionary of date strings (YYYY-MM-DD) to holiday names

    Example:
        lookup = HolidayMapLookup({"2026-03-01": "삼일절"})
        lookup.is_holiday("2026-03-01")  # True
    """

    def __init__(self, holiday_map: Dict[str, str]):
        self.holiday_map = dict(holiday_map)

    def is_holiday(self, date_key: str) -> bool:
        return date_key in self.holiday_map

    def holiday_name(self, date_key: str) -> Optional[str]:
        return self.holiday_map.get(date_key)


DEFAULT_HOLIDAY_LOOKUP = NoHolidays()


def classify_service_day(date_key: str, holiday_lookup: HolidayLookup = None) -> ServiceDayType:
    """
    Classify a date into WEEKDAY / SATURDAY / SUNDAY / HOLIDAY.

    Args:
        date_key: Date string in YYYY-MM-DD format
        holiday_lookup: Holiday source, defaults to NoHolidays

    Returns:
        ServiceDayType

    Raises:
        InvalidDateKey: if date_key is not a valid date
    """
    # Validate before consulting the lookup so bad input never reaches it
    parse_date_key(date_key)
    lookup = holiday_lookup or DEFAULT_HOLIDAY_LOOKUP
    if lookup.is_holiday(date_key):
        return ServiceDayType.HOLIDAY

    dow = day_of_week(date_key)  # 0 = Sunday
    if dow == 0:
        return ServiceDayType.SUNDAY
    if dow == 6:
        return ServiceDayType.SATURDAY
    return ServiceDayType.WEEKDAY
