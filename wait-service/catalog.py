"""
Static restaurant catalog and corner operating schedules

Loaded once at import and never mutated. Every lookup is keyed by
CornerKey(restaurant_id, corner_id). Window times are minutes since midnight,
half-open [start, end).
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, NamedTuple, Optional, Tuple


class CornerKey(NamedTuple):
    restaurant_id: str
    corner_id: str


@dataclass(frozen=True)
class TimeWindow:
    start: int
    end: int

    def contains(self, minute: int) -> bool:
        return self.start <= minute < self.end


@dataclass(frozen=True)
class CornerSchedule:
    key: CornerKey
    weekday_windows: Tuple[TimeWindow, ...] = ()
    saturday_windows: Tuple[TimeWindow, ...] = ()
    # None means "no explicit Sunday/holiday schedule"
    sunday_windows: Optional[Tuple[TimeWindow, ...]] = None
    # Keyed by ServiceDayType value ("WEEKDAY", "SATURDAY", ...)
    break_windows: Mapping[str, Tuple[TimeWindow, ...]] = field(default_factory=dict)
    requires_menu_data_for_active: bool = False


@dataclass(frozen=True)
class Restaurant:
    id: str
    name: str
    location: str
    hours: str
    corner_order: Tuple[str, ...]

    def corner_keys(self) -> List[CornerKey]:
        return [CornerKey(self.id, corner_id) for corner_id in self.corner_order]


def _w(start: str, end: str) -> TimeWindow:
    sh, sm = start.split(":")
    eh, em = end.split(":")
    return TimeWindow(int(sh) * 60 + int(sm), int(eh) * 60 + int(em))


RESTAURANTS: Tuple[Restaurant, ...] = (
    Restaurant(
        id="hanyang_plaza",
        name="한양플라자(학생식당)",
        location="학생복지관(한양플라자) 3층",
        hours=(
            "평일: 천원의 아침밥 08:20~10:20 / 중식 11:00~14:30 / 석식 16:00~18:00\n"
            "라면 12:00~18:00 (Break Time 14:30~15:30)\n"
            "토요일: 중식 10:00~14:00 / 라면 10:00~18:00\n"
            "일요일/공휴일 운영 없음"
        ),
        corner_order=("breakfast_1000", "western", "korean", "instant", "cupbap", "ramen"),
    ),
    Restaurant(
        id="materials",
        name="신소재공학관",
        location="신소재공학관 7층",
        hours=(
            "평일: 중식 11:30~13:30 / 석식 17:00~18:30\n"
            "토요일: 중식 11:30~13:30\n"
            "일요일/공휴일 운영 없음"
        ),
        corner_order=("set_meal", "single_dish", "rice_bowl", "dinner"),
    ),
    Restaurant(
        id="life_science",
        name="생활과학관",
        location="생활과학관 7층",
        hours=(
            "평일: 중식 11:30~14:00 / 석식 17:00~18:30\n"
            "토요일: 중식 11:30~13:30\n"
            "일요일/공휴일 운영 없음"
        ),
        corner_order=("dam_a_lunch", "pangeos_lunch", "dam_a_dinner"),
    ),
)

CORNER_DISPLAY_NAMES: Dict[str, str] = {
    "breakfast_1000": "천원의 아침밥",
    "western": "양식",
    "korean": "한식",
    "instant": "즉석",
    "cupbap": "오늘의 컵밥",
    "ramen": "라면",
    "set_meal": "정식",
    "single_dish": "일품",
    "rice_bowl": "덮밥",
    "dinner": "석식",
    "dam_a_lunch": "중식 Dam-A",
    "pangeos_lunch": "중식 Pangeos",
    "dam_a_dinner": "석식 Dam-A",
}

_LUNCH_DINNER_PLAZA = (_w("11:00", "14:30"), _w("16:00", "18:00"))

_SCHEDULE_LIST = [
    # hanyang_plaza
    CornerSchedule(
        key=CornerKey("hanyang_plaza", "breakfast_1000"),
        weekday_windows=(_w("08:20", "10:20"),),
    ),
    CornerSchedule(
        key=CornerKey("hanyang_plaza", "western"),
        weekday_windows=_LUNCH_DINNER_PLAZA,
        saturday_windows=(_w("10:00", "14:00"),),
    ),
    CornerSchedule(
        key=CornerKey("hanyang_plaza", "korean"),
        weekday_windows=_LUNCH_DINNER_PLAZA,
        saturday_windows=(_w("10:00", "14:00"),),
    ),
    CornerSchedule(
        key=CornerKey("hanyang_plaza", "instant"),
        weekday_windows=_LUNCH_DINNER_PLAZA,
    ),
    CornerSchedule(
        key=CornerKey("hanyang_plaza", "cupbap"),
        weekday_windows=_LUNCH_DINNER_PLAZA,
        requires_menu_data_for_active=True,
    ),
    CornerSchedule(
        key=CornerKey("hanyang_plaza", "ramen"),
        weekday_windows=(_w("12:00", "18:00"),),
        saturday_windows=(_w("10:00", "18:00"),),
        break_windows={"WEEKDAY": (_w("14:30", "15:30"),)},
    ),
    # materials
    CornerSchedule(
        key=CornerKey("materials", "set_meal"),
        weekday_windows=(_w("11:30", "13:30"),),
        saturday_windows=(_w("11:30", "13:30"),),
    ),
    CornerSchedule(
        key=CornerKey("materials", "single_dish"),
        weekday_windows=(_w("11:30", "13:30"),),
        saturday_windows=(_w("11:30", "13:30"),),
    ),
    CornerSchedule(
        key=CornerKey("materials", "rice_bowl"),
        weekday_windows=(_w("11:30", "13:30"),),
        requires_menu_data_for_active=True,
    ),
    CornerSchedule(
        key=CornerKey("materials", "dinner"),
        weekday_windows=(_w("17:00", "18:30"),),
    ),
    # life_science
    CornerSchedule(
        key=CornerKey("life_science", "dam_a_lunch"),
        weekday_windows=(_w("11:30", "14:00"),),
        saturday_windows=(_w("11:30", "13:30"),),
    ),
    CornerSchedule(
        key=CornerKey("life_science", "pangeos_lunch"),
        weekday_windows=(_w("11:30", "14:00"),),
    ),
    CornerSchedule(
        key=CornerKey("life_science", "dam_a_dinner"),
        weekday_windows=(_w("17:00", "18:30"),),
    ),
]

CORNER_SCHEDULES: Dict[CornerKey, CornerSchedule] = {s.key: s for s in _SCHEDULE_LIST}


def get_restaurant(restaurant_id: str) -> Optional[Restaurant]:
    for restaurant in RESTAURANTS:
        if restaurant.id == restaurant_id:
            return restaurant
    return None


def all_corner_keys(restaurants=RESTAURANTS) -> List[CornerKey]:
    """Every (restaurant, corner) pair in catalog order"""
    keys = []
    for restaurant in restaurants:
        keys.extend(restaurant.corner_keys())
    return keys


def get_corner_display_name(corner_id: str) -> str:
    return CORNER_DISPLAY_NAMES.get(corner_id, corner_id)
