"""
Waiting-data query operations

Each operation returns rows, an empty list (no data) or raises
SourceUnavailable. Invalid dates and times raise InvalidInput before any
store is touched.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from aggregator import FanOutAggregator, FanOutSummary, QueueSnapshot
from date_utils import ServerClock, epoch_millis_to_iso, parse_optional_date
from router import Source, SourceRouter
from time_buckets import NO_DATA, RequestKind, Resolution, parse_requested_time, resolve

logger = logging.getLogger(__name__)


@dataclass
class WaitingResult:
    date_key: str
    source: Source
    snapshots: List[QueueSnapshot] = field(default_factory=list)
    summary: FanOutSummary = field(default_factory=FanOutSummary)
    resolution: Optional[Resolution] = None
    stale: bool = False


@dataclass
class TimestampsResult:
    date_key: str
    source: Source
    timestamps_ms: List[int] = field(default_factory=list)
    summary: FanOutSummary = field(default_factory=FanOutSummary)

    @property
    def timestamps(self) -> List[str]:
        return [epoch_millis_to_iso(ts) for ts in self.timestamps_ms]


class WaitingService:
    def __init__(self, router: SourceRouter, corner_keys=None):
        self.router = router
        self.corner_keys = corner_keys

    @property
    def clock(self) -> ServerClock:
        return self.router.clock

    def _aggregator(self, date_key: str):
        source, store = self.router.select(date_key)
        return source, FanOutAggregator(store, self.corner_keys)

    async def get_latest(self, date_key: Optional[str] = None) -> WaitingResult:
        """
        Most recent rows of a day.

        Live reads older than the staleness threshold come back empty with
        stale=True.
        """
        date_key = parse_optional_date(date_key, self.clock)
        source, aggregator = self._aggregator(date_key)
        snapshots, summary = await aggregator.latest_for_date(date_key)

        if not snapshots:
            logger.info(f"No waiting data for {date_key} ({source.value})")
            return WaitingResult(date_key, source, [], summary, NO_DATA)

        latest_ms = snapshots[0].timestamp_ms
        resolution = resolve(parse_requested_time(None), [latest_ms])
        if source == Source.LIVE and self.router.is_stale(latest_ms):
            logger.warning(
                f"⚠️  Stale live data for {date_key}: latest {epoch_millis_to_iso(latest_ms)} "
                f"is {self.router.age_seconds(latest_ms)}s old (limit {self.router.stale_seconds}s)"
            )
            return WaitingResult(date_key, source, [], summary, resolution, stale=True)

        return WaitingResult(date_key, source, snapshots, summary, resolution)

    async def get_all(self, date_key: Optional[str] = None) -> WaitingResult:
        date_key = parse_optional_date(date_key, self.clock)
        source, aggregator = self._aggregator(date_key)
        snapshots, summary = await aggregator.all_for_date(date_key)
        return WaitingResult(date_key, source, snapshots, summary)

    async def get_timestamps(self, date_key: Optional[str] = None) -> TimestampsResult:
        date_key = parse_optional_date(date_key, self.clock)
        source, aggregator = self._aggregator(date_key)
        timestamps, summary = await aggregator.timestamps_for_date(date_key)
        return TimestampsResult(date_key, source, timestamps, summary)

    async def get_wait_time_at(self, date_key: Optional[str] = None, time: Optional[str] = None) -> WaitingResult:
        """
        Rows representing a requested instant of a day.

        Args:
            date_key: YYYY-MM-DD, defaults to today
            time: ISO timestamp, "HH:MM", or None for the latest rows

        ISO requests return the exact timestamp if stored, otherwise the
        nearest one. HH:MM requests return the nearest timestamp by time of
        day for today, and 5-minute bucket averages for other dates.
        """
        date_key = parse_optional_date(date_key, self.clock)
        requested = parse_requested_time(time)
        if requested.kind == RequestKind.LATEST:
            return await self.get_latest(date_key)

        source, aggregator = self._aggregator(date_key)
        archive = source == Source.ARCHIVE

        if requested.kind == RequestKind.HHMM and archive:
            resolution = resolve(requested, [], archive=True)
            snapshots, summary = await aggregator.bucket_for_date(date_key, resolution.bucket_start)
            if not snapshots:
                return WaitingResult(date_key, source, [], summary, NO_DATA)
            return WaitingResult(date_key, source, snapshots, summary, resolution)

        rows, summary = await aggregator.all_for_date(date_key)
        available = sorted({s.timestamp_ms for s in rows})
        resolution = resolve(requested, available, archive=archive)
        if not resolution.has_data:
            return WaitingResult(date_key, source, [], summary, resolution)

        snapshots = [s for s in rows if s.timestamp_ms == resolution.timestamp_ms]
        return WaitingResult(date_key, source, snapshots, summary, resolution)
