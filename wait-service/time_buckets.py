"""
Resolve a requested instant against the observations that actually exist

A request is either an ISO timestamp, an "HH:MM" clock time, or nothing
(meaning "latest"). Candidates are epoch-millisecond timestamps. Nearest
matches always keep the first candidate on ties so output is stable for the
same input order.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from date_utils import (
    bucket_start,
    is_iso_timestamp,
    iso_to_epoch_millis,
    minute_of_day,
    parse_hhmm,
)
from exceptions import InvalidTimeFormat


class RequestKind(str, Enum):
    ISO = "iso"
    HHMM = "hhmm"
    LATEST = "latest"


class ResolutionKind(str, Enum):
    EXACT = "exact"
    NEAREST = "nearest"
    LATEST = "latest"
    BUCKET = "bucket"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class RequestedTime:
    kind: RequestKind
    raw: Optional[str] = None
    epoch_ms: Optional[int] = None
    minute: Optional[int] = None

    @property
    def bucket_start(self) -> Optional[int]:
        if self.minute is None:
            return None
        return bucket_start(self.minute)


@dataclass(frozen=True)
class Resolution:
    kind: ResolutionKind
    timestamp_ms: Optional[int] = None
    bucket_start: Optional[int] = None

    @property
    def has_data(self) -> bool:
        return self.kind != ResolutionKind.NO_DATA


NO_DATA = Resolution(ResolutionKind.NO_DATA)


def parse_requested_time(value: Optional[str]) -> RequestedTime:
    """
    Classify a raw time parameter.

    Raises:
        InvalidTimeFormat: if value is neither empty, HH:MM, nor ISO
    """
    if value is None or value == "":
        return RequestedTime(RequestKind.LATEST)
    if "T" in value:
        if not is_iso_timestamp(value):
            raise InvalidTimeFormat(f"Invalid time format: {value!r}. Expected HH:MM or ISO timestamp")
        return RequestedTime(RequestKind.ISO, raw=value, epoch_ms=iso_to_epoch_millis(value))
    return RequestedTime(RequestKind.HHMM, raw=value, minute=parse_hhmm(value))


def nearest_index(candidates: Sequence[float], target: float) -> Optional[int]:
    """Index of the candidate closest to target; first one wins ties"""
    best_index = None
    best_diff = None
    for index, value in enumerate(candidates):
        diff = abs(value - target)
        if best_diff is None or diff < best_diff:
            best_index = index
            best_diff = diff
    return best_index


def _nearest(available: Sequence[int], target: float, key: Callable[[int], float]) -> Optional[int]:
    index = nearest_index([key(ts) for ts in available], target)
    return None if index is None else available[index]


def resolve(requested: RequestedTime, available: Sequence[int], archive: bool = False) -> Resolution:
    """
    Pick the observation (or bucket) that represents the requested instant.

    Args:
        requested: parsed request, see parse_requested_time
        available: candidate timestamps in epoch ms, in store order
        archive: True for non-today reads; HH:MM requests then resolve to a
                 5-minute bucket that the store averages

    Returns:
        Resolution; NO_DATA when there is nothing to pick from
    """
    if requested.kind == RequestKind.HHMM and archive:
        return Resolution(ResolutionKind.BUCKET, bucket_start=requested.bucket_start)

    if not available:
        return NO_DATA

    if requested.kind == RequestKind.LATEST:
        return Resolution(ResolutionKind.LATEST, timestamp_ms=max(available))

    if requested.kind == RequestKind.ISO:
        if requested.epoch_ms in available:
            return Resolution(ResolutionKind.EXACT, timestamp_ms=requested.epoch_ms)
        picked = _nearest(available, requested.epoch_ms, key=lambda ts: ts)
        return Resolution(ResolutionKind.NEAREST, timestamp_ms=picked)

    picked = _nearest(available, requested.minute, key=minute_of_day)
    return Resolution(
        ResolutionKind.NEAREST,
        timestamp_ms=picked,
        bucket_start=requested.bucket_start,
    )
