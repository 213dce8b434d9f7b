"""
Tests for the fan-out aggregator: merge rules and partial-failure handling
"""
import asyncio

import pytest

from aggregator import FanOutAggregator, round_half_up, to_snapshot
from catalog import CornerKey, all_corner_keys
from conftest import TODAY, FakeStore, kst_ms, record
from exceptions import SourceUnavailable

KEYS = [
    CornerKey("hanyang_plaza", "western"),
    CornerKey("hanyang_plaza", "korean"),
    CornerKey("hanyang_plaza", "ramen"),
]


def at(hh, mm, ss=0, date_key=TODAY):
    return kst_ms(date_key, hh, mm, ss)


def test_latest_returns_only_rows_at_max_timestamp():
    store = FakeStore([
        record("hanyang_plaza", "western", at(12, 0), 5),
        record("hanyang_plaza", "western", at(12, 5), 7),
        record("hanyang_plaza", "korean", at(12, 5), 3),
        record("hanyang_plaza", "ramen", at(12, 0), 9),
    ])
    snapshots, summary = asyncio.run(FanOutAggregator(store, KEYS).latest_for_date(TODAY))

    assert {(s.corner_id, s.queue_len) for s in snapshots} == {("western", 7), ("korean", 3)}
    assert all(s.timestamp_ms == at(12, 5) for s in snapshots)
    assert summary.to_dict() == {"attempted": 3, "succeeded": 3, "empty": 0, "failed": 0}
    # limit 1, newest first, over the whole KST day
    for _, start_ms, end_ms, limit, descending in store.calls:
        assert (start_ms, end_ms) == (at(0, 0), kst_ms("2026-01-16", 0, 0) - 1)
        assert limit == 1 and descending is True


def test_latest_ignores_other_days():
    store = FakeStore([
        record("hanyang_plaza", "western", kst_ms("2026-01-14", 23, 59, 59), 5),
        record("hanyang_plaza", "western", kst_ms("2026-01-16", 0, 0, 0), 5),
    ])
    snapshots, summary = asyncio.run(FanOutAggregator(store, KEYS).latest_for_date(TODAY))
    assert snapshots == []
    assert summary.empty == 3


def test_partial_failure_is_omitted_not_raised():
    store = FakeStore(
        [
            record("hanyang_plaza", "western", at(12, 0), 5),
            record("hanyang_plaza", "ramen", at(12, 0), 9),
        ],
        fail_corners={"ramen"},
    )
    snapshots, summary = asyncio.run(FanOutAggregator(store, KEYS).latest_for_date(TODAY))

    assert [s.corner_id for s in snapshots] == ["western"]
    assert summary.attempted == 3
    assert summary.succeeded == 1
    assert summary.empty == 1
    assert summary.failed == 1


def test_all_failures_raise_source_unavailable():
    store = FakeStore(name="ddb", fail_all=True)
    with pytest.raises(SourceUnavailable) as exc_info:
        asyncio.run(FanOutAggregator(store, KEYS).latest_for_date(TODAY))
    assert exc_info.value.source == "ddb"


def test_timeout_counts_as_failure():
    store = FakeStore(
        [record("hanyang_plaza", "western", at(12, 0), 5)],
        timeout_seconds=0.05,
        slow_corners={"korean"},
    )
    snapshots, summary = asyncio.run(FanOutAggregator(store, KEYS).all_for_date(TODAY))
    assert [s.corner_id for s in snapshots] == ["western"]
    assert summary.failed == 1


def test_timeout_starts_when_the_store_call_starts():
    keys = all_corner_keys()
    store = FakeStore(
        [record(k.restaurant_id, k.corner_id, at(12, 0), 4) for k in keys],
        timeout_seconds=1.0,
        delay_seconds=0.4,
    )
    snapshots, summary = asyncio.run(FanOutAggregator(store, keys).latest_for_date(TODAY))
    assert summary.failed == 0
    assert len(snapshots) == len(keys)


def test_multi_day_fan_out_does_not_queue_past_timeout():
    keys = all_corner_keys()
    dates = ["2026-01-09", "2026-01-02", "2025-12-26", "2025-12-19"]
    store = FakeStore(
        [record(k.restaurant_id, k.corner_id, kst_ms(d, 12, 1), 2) for d in dates for k in keys],
        timeout_seconds=1.0,
        delay_seconds=0.4,
    )
    samples, summary = asyncio.run(FanOutAggregator(store, keys).bucket_samples(dates, 12 * 60))
    assert summary.attempted == len(dates) * len(keys)
    assert summary.failed == 0
    assert len(samples) == len(dates) * len(keys)


def test_no_corners_is_empty_not_unavailable():
    snapshots, summary = asyncio.run(FanOutAggregator(FakeStore(fail_all=True), []).all_for_date(TODAY))
    assert snapshots == []
    assert summary.attempted == 0


def test_all_for_date_orders_by_timestamp():
    store = FakeStore([
        record("hanyang_plaza", "ramen", at(11, 0), 1),
        record("hanyang_plaza", "western", at(12, 0), 2),
        record("hanyang_plaza", "western", at(10, 0), 3),
        record("hanyang_plaza", "korean", at(11, 0), 4),
    ])
    snapshots, _ = asyncio.run(FanOutAggregator(store, KEYS).all_for_date(TODAY))
    assert [s.timestamp_ms for s in snapshots] == [at(10, 0), at(11, 0), at(11, 0), at(12, 0)]
    # same timestamp keeps catalog order
    assert [s.corner_id for s in snapshots[1:3]] == ["korean", "ramen"]


def test_timestamps_are_distinct_and_sorted():
    store = FakeStore([
        record("hanyang_plaza", "western", at(12, 0), 5),
        record("hanyang_plaza", "korean", at(12, 0), 3),
        record("hanyang_plaza", "korean", at(11, 55), 3),
    ])
    timestamps, _ = asyncio.run(FanOutAggregator(store, KEYS).timestamps_for_date(TODAY))
    assert timestamps == [at(11, 55), at(12, 0)]


def test_bucket_average_per_corner():
    store = FakeStore([
        record("hanyang_plaza", "western", at(12, 5), 4),
        record("hanyang_plaza", "western", at(12, 9, 59), 5),
        record("hanyang_plaza", "western", at(12, 10), 100),  # next bucket
        record("hanyang_plaza", "western", at(12, 4, 59), 100),  # previous bucket
        record("hanyang_plaza", "korean", at(12, 7), 10),
    ])
    snapshots, _ = asyncio.run(FanOutAggregator(store, KEYS).bucket_for_date(TODAY, 12 * 60 + 5))
    by_corner = {s.corner_id: s for s in snapshots}

    assert set(by_corner) == {"western", "korean"}
    # mean 4.5 rounds half up
    assert by_corner["western"].queue_len == 5
    # wait from the unrounded mean: ceil(4.5 / 4.2) = 2
    assert by_corner["western"].est_wait_minutes == 2
    assert by_corner["western"].timestamp_ms == at(12, 5)
    assert by_corner["western"].data_type == "archived"
    assert by_corner["korean"].queue_len == 10


def test_bucket_samples_tag_each_date():
    dates = ["2026-01-08", "2026-01-01"]
    store = FakeStore([
        record("hanyang_plaza", "western", at(12, 0, date_key="2026-01-08"), 2),
        record("hanyang_plaza", "western", at(12, 1, date_key="2026-01-08"), 4),
        record("hanyang_plaza", "western", at(12, 2, date_key="2026-01-01"), 10),
    ])
    samples, summary = asyncio.run(FanOutAggregator(store, KEYS).bucket_samples(dates, 12 * 60))

    assert summary.attempted == len(dates) * len(KEYS)
    assert [(s.date_key, s.mean_queue_len, s.sample_count) for s in samples] == [
        ("2026-01-08", 3.0, 2),
        ("2026-01-01", 10.0, 1),
    ]


def test_stored_wait_wins_over_formula():
    stored = to_snapshot(record("hanyang_plaza", "western", at(12, 0), 10, est=7))
    derived = to_snapshot(record("hanyang_plaza", "western", at(12, 0), 10))
    assert stored.est_wait_minutes == 7
    assert derived.est_wait_minutes == 3
    assert derived.to_dict()["timestamp"] == "2026-01-15T12:00:00+09:00"


@pytest.mark.parametrize("value,expected", [(0.0, 0), (2.4, 2), (2.5, 3), (3.5, 4), (4.49, 4)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected
