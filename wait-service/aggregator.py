"""
Fan-out aggregation over every (restaurant, corner) partition

Each corner is queried as its own task on a worker thread of its own, and all
tasks are awaited together (wait-all-settled). The per-query timeout only
covers the store call, never time spent waiting for a free worker. A corner
that fails or times out is logged and left out of the result; the call only
fails when every corner failed.
"""
import asyncio
import functools
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

from catalog import CornerKey, all_corner_keys
from date_utils import (
    bucket_range_millis,
    day_boundaries_millis,
    epoch_millis_to_iso,
    local_range_millis,
)
from exceptions import SourceUnavailable
from stores import QueueRecord, TimeSeriesStore, build_partition_key
from wait_model import compute_wait_minutes, congestion_level

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueSnapshot:
    restaurant_id: str
    corner_id: str
    timestamp_ms: int
    queue_len: int
    est_wait_minutes: int
    data_type: str = "observed"
    source: Optional[str] = None

    @property
    def timestamp_iso(self) -> str:
        return epoch_millis_to_iso(self.timestamp_ms)

    @property
    def congestion_level(self) -> int:
        return congestion_level(self.est_wait_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp_iso,
            "restaurantId": self.restaurant_id,
            "cornerId": self.corner_id,
            "queue_len": self.queue_len,
            "est_wait_time_min": self.est_wait_minutes,
            "congestion_level": self.congestion_level,
            "data_type": self.data_type,
            "source": self.source,
        }


def to_snapshot(record: QueueRecord) -> QueueSnapshot:
    """Stored wait minutes win; older records get the formula"""
    if record.est_wait_time_min is not None:
        est = record.est_wait_time_min
    else:
        est = compute_wait_minutes(record.queue_len, record.restaurant_id, record.corner_id)
    return QueueSnapshot(
        restaurant_id=record.restaurant_id,
        corner_id=record.corner_id,
        timestamp_ms=record.timestamp_ms,
        queue_len=record.queue_len,
        est_wait_minutes=est,
        data_type=record.data_type,
        source=record.source,
    )


class Outcome(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class CornerQueryResult:
    key: CornerKey
    outcome: Outcome
    records: List[QueueRecord] = field(default_factory=list)
    error: Optional[BaseException] = None
    # Caller-supplied label, e.g. the date for multi-day fan-outs
    tag: Hashable = None


@dataclass
class FanOutSummary:
    attempted: int = 0
    succeeded: int = 0
    empty: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "empty": self.empty,
            "failed": self.failed,
        }


@dataclass(frozen=True)
class CornerQuery:
    key: CornerKey
    start_ms: int
    end_ms: int
    tag: Hashable = None


@dataclass(frozen=True)
class BucketSample:
    """Average of one (date, corner) bucket"""
    date_key: str
    key: CornerKey
    mean_queue_len: float
    sample_count: int


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class FanOutAggregator:
    """
    Parallel per-corner queries against one store.

    Args:
        store: any TimeSeriesStore
        corner_keys: partitions to query, defaults to the whole catalog
    """

    def __init__(self, store: TimeSeriesStore, corner_keys: Sequence[CornerKey] = None):
        self.store = store
        self.corner_keys = list(corner_keys) if corner_keys is not None else all_corner_keys()

    @property
    def source_name(self) -> str:
        return getattr(self.store, "name", type(self.store).__name__)

    async def _query_one(
        self,
        query: CornerQuery,
        limit: Optional[int],
        descending: bool,
        executor: ThreadPoolExecutor,
    ) -> CornerQueryResult:
        partition_key = build_partition_key(*query.key)
        loop = asyncio.get_running_loop()
        call = functools.partial(
            self.store.query, partition_key, query.start_ms, query.end_ms, limit, descending,
        )
        records = await asyncio.wait_for(
            loop.run_in_executor(executor, call),
            timeout=self.store.timeout_seconds,
        )
        outcome = Outcome.OK if records else Outcome.EMPTY
        return CornerQueryResult(key=query.key, outcome=outcome, records=list(records), tag=query.tag)

    async def fan_out(
        self,
        queries: Sequence[CornerQuery],
        limit: Optional[int] = None,
        descending: bool = False,
    ) -> Tuple[List[CornerQueryResult], FanOutSummary]:
        """
        Run every query concurrently and settle each one.

        Returns:
            (results in query order, summary)

        Raises:
            SourceUnavailable: if there was at least one query and all of them failed
        """
        # One worker per query so no query waits in line behind another
        executor = ThreadPoolExecutor(max_workers=max(1, len(queries)), thread_name_prefix="fan-out")
        try:
            settled = await asyncio.gather(
                *(self._query_one(q, limit, descending, executor) for q in queries),
                return_exceptions=True,
            )
        finally:
            # Timed-out calls finish in the background
            executor.shutdown(wait=False)

        results: List[CornerQueryResult] = []
        summary = FanOutSummary(attempted=len(queries))
        for query, outcome in zip(queries, settled):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.TimeoutError):
                    logger.warning(
                        f"⚠️  {self.source_name} query timed out for "
                        f"{query.key.restaurant_id}/{query.key.corner_id}"
                    )
                else:
                    logger.warning(
                        f"⚠️  {self.source_name} query failed for "
                        f"{query.key.restaurant_id}/{query.key.corner_id}: {outcome!r}"
                    )
                summary.failed += 1
                results.append(CornerQueryResult(
                    key=query.key, outcome=Outcome.FAILED, error=outcome, tag=query.tag,
                ))
                continue

            if outcome.outcome == Outcome.OK:
                summary.succeeded += 1
            else:
                summary.empty += 1
            results.append(outcome)

        if summary.attempted and summary.failed == summary.attempted:
            logger.error(f"❌ All {summary.attempted} {self.source_name} queries failed")
            raise SourceUnavailable(
                f"All {summary.attempted} queries against {self.source_name} failed",
                source=self.source_name,
            )

        if summary.failed:
            logger.warning(
                f"⚠️  Partial fan-out: {summary.failed}/{summary.attempted} "
                f"{self.source_name} queries failed"
            )
        return results, summary

    def _day_queries(self, date_key: str) -> List[CornerQuery]:
        start_ms, end_ms = day_boundaries_millis(date_key)
        return [CornerQuery(key, start_ms, end_ms, tag=date_key) for key in self.corner_keys]

    async def latest_for_date(self, date_key: str) -> Tuple[List[QueueSnapshot], FanOutSummary]:
        """Rows at the single most recent timestamp of the day, across corners"""
        results, summary = await self.fan_out(self._day_queries(date_key), limit=1, descending=True)

        records = [r for result in results for r in result.records]
        if not records:
            return [], summary

        latest_ms = max(r.timestamp_ms for r in records)
        snapshots = [to_snapshot(r) for r in records if r.timestamp_ms == latest_ms]
        return snapshots, summary

    async def all_for_date(self, date_key: str) -> Tuple[List[QueueSnapshot], FanOutSummary]:
        """Every row of the day, ordered by timestamp then catalog order"""
        results, summary = await self.fan_out(self._day_queries(date_key))

        snapshots = [to_snapshot(r) for result in results for r in result.records]
        snapshots.sort(key=lambda s: s.timestamp_ms)
        return snapshots, summary

    async def timestamps_for_date(self, date_key: str) -> Tuple[List[int], FanOutSummary]:
        """Distinct timestamps of the day, ascending"""
        results, summary = await self.fan_out(self._day_queries(date_key))

        timestamps = {r.timestamp_ms for result in results for r in result.records}
        return sorted(timestamps), summary

    async def bucket_results(
        self,
        date_keys: Sequence[str],
        bucket_start_minute: int,
    ) -> Tuple[List[CornerQueryResult], FanOutSummary]:
        """Raw rows of one 5-minute bucket for every date x corner, tagged by date"""
        queries = []
        for date_key in date_keys:
            start_ms, end_ms = bucket_range_millis(date_key, bucket_start_minute)
            queries.extend(CornerQuery(key, start_ms, end_ms, tag=date_key) for key in self.corner_keys)

        return await self.fan_out(queries)

    async def bucket_samples(
        self,
        date_keys: Sequence[str],
        bucket_start_minute: int,
    ) -> Tuple[List[BucketSample], FanOutSummary]:
        """Per (date, corner) mean queue length; pairs without samples are left out"""
        results, summary = await self.bucket_results(date_keys, bucket_start_minute)

        samples = []
        for result in results:
            if not result.records:
                continue
            values = [r.queue_len for r in result.records]
            samples.append(BucketSample(
                date_key=result.tag,
                key=result.key,
                mean_queue_len=sum(values) / len(values),
                sample_count=len(values),
            ))
        return samples, summary

    async def bucket_for_date(
        self,
        date_key: str,
        bucket_start_minute: int,
    ) -> Tuple[List[QueueSnapshot], FanOutSummary]:
        """
        One averaged row per corner for a 5-minute bucket of a day.

        queueLen is the mean rounded half up; the wait is computed from the
        unrounded mean; the timestamp is the bucket start.
        """
        samples, summary = await self.bucket_samples([date_key], bucket_start_minute)
        bucket_ms, _ = local_range_millis(date_key, bucket_start_minute, bucket_start_minute + 1)

        snapshots = [
            QueueSnapshot(
                restaurant_id=sample.key.restaurant_id,
                corner_id=sample.key.corner_id,
                timestamp_ms=bucket_ms,
                queue_len=round_half_up(sample.mean_queue_len),
                est_wait_minutes=compute_wait_minutes(
                    sample.mean_queue_len, sample.key.restaurant_id, sample.key.corner_id
                ),
                data_type="archived",
                source=self.source_name,
            )
            for sample in samples
        ]
        return snapshots, summary
