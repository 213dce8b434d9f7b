"""
Closed-form wait time model

Formula: ceil(queue_len / service_rate + overhead), then clamped to a
per-corner ceiling. The ceiling is a UX limit on what we report, not part
of the service-rate model.
"""
import math
from typing import Dict

from catalog import CornerKey
from exceptions import InvalidInput

# People served per minute, by corner id
SERVICE_RATE_PEOPLE_PER_MIN: Dict[str, float] = {
    "western": 4.2,
    "korean": 3.6,
    "ramen": 1.6,
    "instant": 2.35,
    "cupbap": 3.0,
    "breakfast_1000": 3.5,
    "set_meal": 3.2,
    "single_dish": 2.8,
    "rice_bowl": 2.5,
    "dinner": 2.8,
    "dam_a": 2.9,
    "dam_a_lunch": 2.9,
    "dam_a_dinner": 2.9,
    "pangeos": 2.35,
    "pangeos_lunch": 2.35,
}

# Fixed cooking/preparation time in minutes
OVERHEAD_MIN: Dict[str, float] = {
    "ramen": 1,
    "instant": 1,
    "pangeos": 1,
    "pangeos_lunch": 1,
}

DEFAULT_SERVICE_RATE = 2.5
DEFAULT_WAIT_CAP_MINUTES = 12

WAIT_CAP_MINUTES: Dict[CornerKey, int] = {
    CornerKey("hanyang_plaza", "instant"): 18,
    CornerKey("life_science", "pangeos"): 16,
    CornerKey("life_science", "pangeos_lunch"): 16,
}


def get_service_rate(corner_id: str) -> float:
    return SERVICE_RATE_PEOPLE_PER_MIN.get(corner_id, DEFAULT_SERVICE_RATE)


def get_overhead(corner_id: str) -> float:
    return OVERHEAD_MIN.get(corner_id, 0)


def get_wait_cap(restaurant_id: str, corner_id: str) -> int:
    return WAIT_CAP_MINUTES.get(CornerKey(restaurant_id, corner_id), DEFAULT_WAIT_CAP_MINUTES)


def compute_wait_minutes(queue_len: float, restaurant_id: str, corner_id: str) -> int:
    """
    Estimated wait in whole minutes.

    Args:
        queue_len: People in queue (may be fractional for averaged buckets)
        restaurant_id: Restaurant identifier
        corner_id: Corner identifier

    Returns:
        Minutes, never above the corner's cap

    Raises:
        InvalidInput: if queue_len is negative

    Examples:
        >>> compute_wait_minutes(10, "hanyang_plaza", "ramen")
        8
        >>> compute_wait_minutes(100, "hanyang_plaza", "instant")
        18
    """
    if queue_len is None or queue_len < 0:
        raise InvalidInput(f"Queue length must be >= 0, got {queue_len!r}")

    raw = math.ceil(queue_len / get_service_rate(corner_id) + get_overhead(corner_id))
    return min(raw, get_wait_cap(restaurant_id, corner_id))


def congestion_level(wait_minutes: int) -> int:
    """1 (very relaxed) .. 5 (very crowded)"""
    if wait_minutes <= 2:
        return 1
    if wait_minutes <= 5:
        return 2
    if wait_minutes <= 9:
        return 3
    if wait_minutes <= 12:
        return 4
    return 5
