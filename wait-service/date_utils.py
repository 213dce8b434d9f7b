"""
Date and time helpers for the service timezone (KST)

All date keys are YYYY-MM-DD in the service timezone. Stores index time as
epoch milliseconds; callers see ISO strings like 2026-01-15T12:05:00+09:00.
Day-of-week numbers use 0 = Sunday ... 6 = Saturday.
"""
import re
from datetime import datetime, date, timedelta
from typing import List, Optional, Tuple

import pytz

from config import get_settings
from exceptions import InvalidDateKey, InvalidInput, InvalidTimeFormat

settings = get_settings()

DATE_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
HHMM_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")
ISO_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2})?(\.\d{1,6})?(Z|[+-]\d{2}:\d{2})?$"
)

DAY_NAMES_KO = ["일요일", "월요일", "화요일", "수요일", "목요일", "금요일", "토요일"]

BUCKET_MINUTES = 5


def service_tz():
    return pytz.timezone(settings.TIMEZONE)


def parse_date_key(date_key: str) -> date:
    """
    Parse a YYYY-MM-DD date key.

    Raises:
        InvalidDateKey: if the string is malformed or not a real calendar date
    """
    if not isinstance(date_key, str) or not DATE_KEY_PATTERN.match(date_key):
        raise InvalidDateKey(f"Invalid date format: {date_key!r}. Expected YYYY-MM-DD")
    try:
        return datetime.strptime(date_key, "%Y-%m-%d").date()
    except ValueError:
        raise InvalidDateKey(f"Invalid date: {date_key!r}")


def is_valid_date_key(value: str) -> bool:
    try:
        parse_date_key(value)
        return True
    except InvalidDateKey:
        return False


def format_date_key(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def day_of_week(date_key: str) -> int:
    """Day of week for a date key, 0 = Sunday ... 6 = Saturday"""
    return (parse_date_key(date_key).weekday() + 1) % 7


def day_of_week_name_ko(dow: int) -> str:
    if 0 <= dow < len(DAY_NAMES_KO):
        return DAY_NAMES_KO[dow]
    return ""


def add_days(date_key: str, delta: int) -> str:
    return format_date_key(parse_date_key(date_key) + timedelta(days=delta))


def parse_hhmm(value: str) -> int:
    """
    Parse "HH:MM" into minutes since midnight.

    Raises:
        InvalidTimeFormat: if not HH:MM with 00 <= HH <= 23 and 00 <= MM <= 59
    """
    match = HHMM_PATTERN.match(value or "")
    if not match:
        raise InvalidTimeFormat(f"Invalid time format: {value!r}. Use HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidTimeFormat(f"Invalid time format: {value!r}. Use HH:MM")
    return hours * 60 + minutes


def format_hhmm(minute_of_day: int) -> str:
    return f"{minute_of_day // 60:02d}:{minute_of_day % 60:02d}"


def bucket_start(minute_of_day: int) -> int:
    """Start minute of the 5-minute bucket containing minute_of_day"""
    return (minute_of_day // BUCKET_MINUTES) * BUCKET_MINUTES


def bucket_label(start_minute: int) -> str:
    """e.g. 725 -> "12:05-12:09" """
    return f"{format_hhmm(start_minute)}-{format_hhmm(start_minute + BUCKET_MINUTES - 1)}"


def is_iso_timestamp(value: str) -> bool:
    return bool(value) and bool(ISO_PATTERN.match(value))


def parse_iso(value: str) -> datetime:
    """
    Parse an ISO timestamp into an aware datetime.
    Naive timestamps are interpreted in the service timezone.
    """
    if not is_iso_timestamp(value):
        raise InvalidTimeFormat(f"Invalid ISO timestamp: {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise InvalidTimeFormat(f"Invalid ISO timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = service_tz().localize(parsed)
    return parsed


def to_epoch_millis(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


def iso_to_epoch_millis(value: str) -> int:
    return to_epoch_millis(parse_iso(value))


def epoch_millis_to_iso(epoch_ms: int) -> str:
    """Render epoch milliseconds as a second-precision ISO string in the service timezone"""
    local = datetime.fromtimestamp(epoch_ms / 1000, tz=pytz.UTC).astimezone(service_tz())
    return local.strftime("%Y-%m-%dT%H:%M:%S") + _format_offset(local)


def epoch_millis_to_date_key(epoch_ms: int) -> str:
    local = datetime.fromtimestamp(epoch_ms / 1000, tz=pytz.UTC).astimezone(service_tz())
    return format_date_key(local.date())


def _format_offset(value: datetime) -> str:
    raw = value.strftime("%z")  # +0900
    return f"{raw[:3]}:{raw[3:]}"


def minute_of_day(epoch_ms: int) -> float:
    """Minutes since local midnight, including the seconds fraction"""
    local = datetime.fromtimestamp(epoch_ms / 1000, tz=pytz.UTC).astimezone(service_tz())
    return local.hour * 60 + local.minute + local.second / 60 + local.microsecond / 60_000_000


def local_range_millis(date_key: str, start_minute: int, end_minute: int) -> Tuple[int, int]:
    """
    Epoch-ms range for [start_minute, end_minute) of a local day, end inclusive at .999

    Example:
        local_range_millis("2026-01-15", 0, 1440) covers 00:00:00.000 - 23:59:59.999
    """
    day = parse_date_key(date_key)
    midnight = service_tz().localize(datetime(day.year, day.month, day.day))
    start = midnight + timedelta(minutes=start_minute)
    end = midnight + timedelta(minutes=end_minute)
    return to_epoch_millis(start), to_epoch_millis(end) - 1


def day_boundaries_millis(date_key: str) -> Tuple[int, int]:
    """KST calendar-day boundary [00:00:00.000, 23:59:59.999] as epoch ms"""
    return local_range_millis(date_key, 0, 24 * 60)


def bucket_range_millis(date_key: str, start_minute: int) -> Tuple[int, int]:
    return local_range_millis(date_key, start_minute, start_minute + BUCKET_MINUTES)


def past_dates_by_day_of_week(today_key: str, target_dow: int, count: int = 4) -> List[str]:
    """
    The last `count` dates strictly before today falling on target_dow,
    most recent first.

    Example:
        past_dates_by_day_of_week("2026-01-15", 5, 2)  # Thursday -> Fridays
        # ["2026-01-09", "2026-01-02"]
    """
    if not 0 <= target_dow <= 6:
        raise InvalidInput(f"Invalid day of week: {target_dow!r}. Expected 0-6")
    today = parse_date_key(today_key)
    today_dow = (today.weekday() + 1) % 7
    delta = (today_dow - target_dow) % 7 or 7
    first = today - timedelta(days=delta)
    return [format_date_key(first - timedelta(weeks=i)) for i in range(count)]


def next_date_for_day_of_week(today_key: str, target_dow: int) -> str:
    """The first date strictly after today falling on target_dow"""
    if not 0 <= target_dow <= 6:
        raise InvalidInput(f"Invalid day of week: {target_dow!r}. Expected 0-6")
    delta = (target_dow - day_of_week(today_key)) % 7 or 7
    return add_days(today_key, delta)


class ServerClock:
    """
    Authoritative server-side clock.

    "Today" is recomputed on every call so a midnight rollover is observed
    by the next request. now_fn is injectable for tests.
    """

    def __init__(self, now_fn=None):
        self._now_fn = now_fn or (lambda: datetime.now(pytz.UTC))

    def now(self) -> datetime:
        current = self._now_fn()
        if current.tzinfo is None:
            current = pytz.UTC.localize(current)
        return current.astimezone(service_tz())

    def now_millis(self) -> int:
        return to_epoch_millis(self.now())

    def today_key(self) -> str:
        return format_date_key(self.now().date())

    def tomorrow_key(self) -> str:
        return add_days(self.today_key(), 1)

    def now_iso(self) -> str:
        return epoch_millis_to_iso(self.now_millis())

    def clock_time(self) -> str:
        return self.now().strftime("%H:%M")


def parse_optional_date(date_key: Optional[str], clock: ServerClock) -> str:
    """Validate an optional date key, defaulting to the server's today"""
    if date_key is None or date_key == "":
        return clock.today_key()
    parse_date_key(date_key)
    return date_key
