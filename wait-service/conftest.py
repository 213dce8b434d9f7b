"""
Shared pytest fixtures: a fixed KST clock and in-memory time-series stores
"""
import time
from datetime import datetime
from typing import Iterable, List, Optional, Set

import pytest
import pytz

from date_utils import ServerClock, to_epoch_millis
from stores import QueueRecord, parse_partition_key, select_range

KST = pytz.timezone("Asia/Seoul")

# Thursday
TODAY = "2026-01-15"


def kst_ms(date_key: str, hh: int, mm: int, ss: int = 0) -> int:
    year, month, day = (int(p) for p in date_key.split("-"))
    return to_epoch_millis(KST.localize(datetime(year, month, day, hh, mm, ss)))


def fixed_clock(date_key: str = TODAY, hh: int = 12, mm: int = 0, ss: int = 0) -> ServerClock:
    year, month, day = (int(p) for p in date_key.split("-"))
    now = KST.localize(datetime(year, month, day, hh, mm, ss))
    return ServerClock(now_fn=lambda: now)


def record(restaurant_id, corner_id, timestamp_ms, queue_len, est=None, data_type="observed"):
    return QueueRecord(
        restaurant_id=restaurant_id,
        corner_id=corner_id,
        timestamp_ms=timestamp_ms,
        queue_len=queue_len,
        est_wait_time_min=est,
        data_type=data_type,
        source="test",
    )


class FakeStore:
    """
    In-memory store with injectable failures.

    Args:
        records: rows to serve
        fail_corners: corner ids whose queries raise
        slow_corners: corner ids whose queries sleep past the timeout
        delay_seconds: latency added to every query
        fail_all: every query raises
    """

    def __init__(
        self,
        records: Iterable[QueueRecord] = (),
        name: str = "fake",
        timeout_seconds: float = 1.0,
        fail_corners: Optional[Set[str]] = None,
        slow_corners: Optional[Set[str]] = None,
        fail_all: bool = False,
        delay_seconds: float = 0.0,
    ):
        self.records: List[QueueRecord] = list(records)
        self.name = name
        self.timeout_seconds = timeout_seconds
        self.fail_corners = fail_corners or set()
        self.slow_corners = slow_corners or set()
        self.fail_all = fail_all
        self.delay_seconds = delay_seconds
        self.calls = []

    def query(self, partition_key, start_ms, end_ms, limit=None, descending=False):
        self.calls.append((partition_key, start_ms, end_ms, limit, descending))
        restaurant_id, corner_id = parse_partition_key(partition_key)
        if self.fail_all or corner_id in self.fail_corners:
            raise ConnectionError(f"store down for {partition_key}")
        if corner_id in self.slow_corners:
            time.sleep(self.timeout_seconds * 5)
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        rows = [r for r in self.records if r.restaurant_id == restaurant_id and r.corner_id == corner_id]
        return select_range(rows, start_ms, end_ms, limit, descending)

    def put(self, records):
        self.records.extend(records)
        return len(records)

    def check_connection(self):
        return not self.fail_all


@pytest.fixture
def clock():
    return fixed_clock()
