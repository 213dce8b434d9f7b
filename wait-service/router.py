"""
Source routing: today reads the live store, every other date the archive

There is no fallback between the two. A disabled source is reported as
SourceUnavailable instead of quietly reading the other store.
"""
import logging
from enum import Enum
from typing import Optional, Tuple

from config import get_settings
from date_utils import ServerClock
from db import SqlWaitingStore
from exceptions import SourceUnavailable
from stores import DynamoDBWaitingStore, S3ArchiveStore, TimeSeriesStore

logger = logging.getLogger(__name__)

settings = get_settings()


class Source(str, Enum):
    LIVE = "live"
    ARCHIVE = "archive"


def route(date_key: str, now_date_key: str) -> Source:
    return Source.LIVE if date_key == now_date_key else Source.ARCHIVE


def build_live_store(kind: str = None) -> Optional[TimeSeriesStore]:
    """Live store from WAITING_SOURCE; None when disabled"""
    kind = (kind or settings.WAITING_SOURCE).lower()
    if kind == "ddb":
        return DynamoDBWaitingStore()
    if kind == "postgres":
        return SqlWaitingStore()
    if kind == "disabled":
        return None
    raise ValueError(f"Unknown WAITING_SOURCE: {kind!r}")


def build_archive_store(kind: str = None) -> Optional[TimeSeriesStore]:
    """Archive store from ARCHIVE_SOURCE; None when disabled"""
    kind = (kind or settings.ARCHIVE_SOURCE).lower()
    if kind == "s3":
        return S3ArchiveStore()
    if kind == "postgres":
        return SqlWaitingStore()
    if kind == "disabled":
        return None
    raise ValueError(f"Unknown ARCHIVE_SOURCE: {kind!r}")


class SourceRouter:
    """
    Args:
        live_store: store for today's reads, None if disabled
        archive_store: store for all other dates, None if disabled
        clock: server clock deciding what "today" is
        stale_seconds: age beyond which live data counts as absent
    """

    def __init__(
        self,
        live_store: Optional[TimeSeriesStore],
        archive_store: Optional[TimeSeriesStore],
        clock: ServerClock = None,
        stale_seconds: int = None,
    ):
        self.live_store = live_store
        self.archive_store = archive_store
        self.clock = clock or ServerClock()
        self.stale_seconds = settings.WAITING_STALE_SECONDS if stale_seconds is None else stale_seconds

    @property
    def live_enabled(self) -> bool:
        return self.live_store is not None

    @property
    def archive_enabled(self) -> bool:
        return self.archive_store is not None

    def route(self, date_key: str) -> Source:
        return route(date_key, self.clock.today_key())

    def store_for(self, source: Source) -> TimeSeriesStore:
        """
        Raises:
            SourceUnavailable: if the routed source is disabled
        """
        store = self.live_store if source == Source.LIVE else self.archive_store
        if store is None:
            raise SourceUnavailable(f"{source.value} waiting source is disabled", source=source.value)
        return store

    def select(self, date_key: str) -> Tuple[Source, TimeSeriesStore]:
        source = self.route(date_key)
        return source, self.store_for(source)

    def age_seconds(self, timestamp_ms: int) -> int:
        return (self.clock.now_millis() - timestamp_ms) // 1000

    def is_stale(self, timestamp_ms: int) -> bool:
        return self.age_seconds(timestamp_ms) > self.stale_seconds
