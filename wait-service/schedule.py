"""
Corner operating-schedule engine

Decides whether a corner is serving at a given date and clock time, and
builds the per-restaurant status list. Nothing in here raises: unknown
corners, malformed input and missing menu data all degrade to "inactive" so
a best-effort list can always be rendered.
"""
import logging
from dataclasses import dataclass
from datetime import time as time_type
from typing import Dict, List, Mapping, Optional, Sequence, Union

from catalog import CORNER_SCHEDULES, CornerKey, CornerSchedule, TimeWindow
from date_utils import parse_hhmm
from exceptions import InvalidInput
from holiday_utils import HolidayLookup, ServiceDayType, classify_service_day

logger = logging.getLogger(__name__)

ClockTime = Union[str, int, time_type]


@dataclass(frozen=True)
class CornerStatus:
    corner_id: str
    is_active: bool


def _to_minute(clock_time: ClockTime) -> int:
    if isinstance(clock_time, time_type):
        return clock_time.hour * 60 + clock_time.minute
    if isinstance(clock_time, int):
        if not 0 <= clock_time < 24 * 60:
            raise InvalidInput(f"Minute of day out of range: {clock_time}")
        return clock_time
    return parse_hhmm(clock_time)


def _inside_any(windows: Sequence[TimeWindow], minute: int) -> bool:
    return any(window.contains(minute) for window in windows)


class ScheduleEngine:
    """
    Operating-schedule engine over an immutable schedule table.

    Args:
        schedules: CornerKey -> CornerSchedule, defaults to the static catalog
        holiday_lookup: injectable holiday source for the day classifier
    """

    def __init__(
        self,
        schedules: Mapping[CornerKey, CornerSchedule] = None,
        holiday_lookup: HolidayLookup = None,
    ):
        self.schedules = schedules if schedules is not None else CORNER_SCHEDULES
        self.holiday_lookup = holiday_lookup

    def get_schedule(self, restaurant_id: str, corner_id: str) -> Optional[CornerSchedule]:
        return self.schedules.get(CornerKey(restaurant_id, corner_id))

    def is_active(
        self,
        restaurant_id: str,
        corner_id: str,
        date_key: str,
        clock_time: ClockTime,
    ) -> bool:
        schedule = self.get_schedule(restaurant_id, corner_id)
        if schedule is None:
            return False

        try:
            day_type = classify_service_day(date_key, self.holiday_lookup)
            minute = _to_minute(clock_time)
        except InvalidInput as e:
            logger.warning(f"⚠️  Schedule check for {restaurant_id}/{corner_id} treated as inactive: {e}")
            return False

        if day_type in (ServiceDayType.SUNDAY, ServiceDayType.HOLIDAY):
            if schedule.sunday_windows is None:
                return False
            return _inside_any(schedule.sunday_windows, minute)

        if day_type == ServiceDayType.SATURDAY:
            windows = schedule.saturday_windows
        else:
            windows = schedule.weekday_windows

        if not windows:
            return False

        breaks = schedule.break_windows.get(day_type.value, ())
        return _inside_any(windows, minute) and not _inside_any(breaks, minute)

    def statuses(
        self,
        restaurant_id: str,
        corner_order: Sequence[str],
        date_key: str,
        clock_time: ClockTime,
        menu_presence_by_corner: Mapping[str, bool] = None,
    ) -> List[CornerStatus]:
        """
        One status per corner, in corner_order.

        Corners flagged requires_menu_data_for_active are only active when
        menu_presence_by_corner says a menu exists for them on date_key.
        """
        menu_presence = menu_presence_by_corner or {}

        schedule_active: Dict[str, bool] = {
            corner_id: self.is_active(restaurant_id, corner_id, date_key, clock_time)
            for corner_id in corner_order
        }

        result = []
        for corner_id in corner_order:
            active = schedule_active[corner_id]
            schedule = self.get_schedule(restaurant_id, corner_id)
            if schedule is not None and schedule.requires_menu_data_for_active:
                active = active and bool(menu_presence.get(corner_id, False))
            result.append(CornerStatus(corner_id=corner_id, is_active=active))
        return result


def sort_by_active_first(statuses: Sequence[CornerStatus]) -> List[CornerStatus]:
    """Stable partition: active corners first, then inactive, each in input order"""
    active = [s for s in statuses if s.is_active]
    inactive = [s for s in statuses if not s.is_active]
    return active + inactive
