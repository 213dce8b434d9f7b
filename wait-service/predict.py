"""
Prediction logic: same weekday, same 5-minute bucket, last N weeks
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

import pandas as pd

from aggregator import CornerQueryResult, FanOutAggregator, FanOutSummary
from catalog import CornerKey, all_corner_keys
from config import get_settings
from date_utils import (
    ServerClock,
    bucket_label,
    bucket_start,
    day_of_week_name_ko,
    next_date_for_day_of_week,
    parse_hhmm,
    past_dates_by_day_of_week,
)
from router import Source, SourceRouter
from wait_model import compute_wait_minutes

logger = logging.getLogger(__name__)

settings = get_settings()

SAMPLE_COLUMNS = ["date", "restaurant_id", "corner_id", "queue_len"]


def classify_confidence(based_on_days: int) -> str:
    """
    Confidence from the number of days that actually had data

    Examples:
        >>> classify_confidence(4)
        'high'
        >>> classify_confidence(1)
        'low'
    """
    if based_on_days >= 4:
        return "high"
    if based_on_days >= 2:
        return "medium"
    if based_on_days >= 1:
        return "low"
    return "none"


@dataclass(frozen=True)
class PredictionRow:
    restaurant_id: str
    corner_id: str
    avg_queue_len: float
    wait_minutes: int
    based_on_days: int
    sample_size: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "restaurantId": self.restaurant_id,
            "cornerId": self.corner_id,
            "predictedQueueLen": self.avg_queue_len,
            "predictedWaitMin": self.wait_minutes,
            "basedOnDays": self.based_on_days,
            "sampleSize": self.sample_size,
        }


@dataclass
class PredictionResult:
    day_of_week: int
    target_time: str
    bucket_start: int
    dates: List[str]
    predictions: List[PredictionRow] = field(default_factory=list)
    based_on_days: int = 0
    sample_size: int = 0
    summary: FanOutSummary = field(default_factory=FanOutSummary)

    @property
    def confidence(self) -> str:
        return classify_confidence(self.based_on_days)

    def metadata(self, clock: ServerClock) -> Dict[str, Any]:
        generated_at = clock.now_iso()
        return {
            "targetDate": next_date_for_day_of_week(clock.today_key(), self.day_of_week),
            "targetTime": self.target_time,
            "timezone": settings.TIMEZONE,
            "timezoneOffset": generated_at[-6:],
            "dayOfWeek": self.day_of_week,
            "dayOfWeekName": day_of_week_name_ko(self.day_of_week),
            "timeBucket": bucket_label(self.bucket_start),
            "basedOnDays": self.based_on_days,
            "sampleSize": self.sample_size,
            "confidence": self.confidence,
            "generatedAt": generated_at,
        }


def results_to_frame(results: Sequence[CornerQueryResult]) -> pd.DataFrame:
    """Flatten tagged bucket results into one row per sample"""
    rows = [
        {
            "date": result.tag,
            "restaurant_id": r.restaurant_id,
            "corner_id": r.corner_id,
            "queue_len": r.queue_len,
        }
        for result in results
        for r in result.records
    ]
    return pd.DataFrame(rows, columns=SAMPLE_COLUMNS)


def daily_means(samples: pd.DataFrame) -> pd.DataFrame:
    """Stage 1: one mean per (corner, date)"""
    return (
        samples.groupby(["restaurant_id", "corner_id", "date"], sort=False)["queue_len"]
        .agg(daily_mean="mean", samples="size")
        .reset_index()
    )


def mean_of_daily_means(daily: pd.DataFrame) -> pd.DataFrame:
    """
    Stage 2: average the daily means per corner.

    A day with many samples weighs the same as a day with few.
    """
    return (
        daily.groupby(["restaurant_id", "corner_id"], sort=False)
        .agg(
            avg_queue_len=("daily_mean", "mean"),
            based_on_days=("date", "nunique"),
            sample_size=("samples", "sum"),
        )
        .reset_index()
    )


class PredictionService:
    """
    Args:
        router: source router; predictions always read the archive store
        lookback_weeks: past same-weekday dates to average
        corner_keys: partitions to predict, defaults to the whole catalog
    """

    def __init__(self, router: SourceRouter, lookback_weeks: int = None, corner_keys: Sequence[CornerKey] = None):
        self.router = router
        self.lookback_weeks = lookback_weeks or settings.PREDICTION_LOOKBACK_WEEKS
        self.corner_keys = list(corner_keys) if corner_keys is not None else all_corner_keys()

    async def predict(self, target_dow: int, time_hhmm: str) -> PredictionResult:
        """
        Predict queue length and wait per corner for a weekday and clock time.

        Raises:
            InvalidInput: bad weekday or time
            SourceUnavailable: archive disabled or every query failed
        """
        bucket = bucket_start(parse_hhmm(time_hhmm))
        dates = past_dates_by_day_of_week(self.router.clock.today_key(), target_dow, self.lookback_weeks)
        store = self.router.store_for(Source.ARCHIVE)

        results, summary = await FanOutAggregator(store, self.corner_keys).bucket_results(dates, bucket)
        result = PredictionResult(
            day_of_week=target_dow,
            target_time=time_hhmm,
            bucket_start=bucket,
            dates=dates,
            summary=summary,
        )

        samples = results_to_frame(results)
        if samples.empty:
            logger.info(f"No historical samples for dow={target_dow} bucket={bucket_label(bucket)} dates={dates}")
            return result

        daily = daily_means(samples)
        per_corner = mean_of_daily_means(daily)

        order = {key: i for i, key in enumerate(self.corner_keys)}
        rows = []
        for row in per_corner.itertuples(index=False):
            mean = float(row.avg_queue_len)
            rows.append(PredictionRow(
                restaurant_id=row.restaurant_id,
                corner_id=row.corner_id,
                avg_queue_len=round(mean, 1),
                wait_minutes=compute_wait_minutes(mean, row.restaurant_id, row.corner_id),
                based_on_days=int(row.based_on_days),
                sample_size=int(row.sample_size),
            ))
        rows.sort(key=lambda p: order.get(CornerKey(p.restaurant_id, p.corner_id), len(order)))

        result.predictions = rows
        result.based_on_days = int(daily["date"].nunique())
        result.sample_size = int(len(samples))

        logger.info(
            f"📊 Prediction dow={target_dow} bucket={bucket_label(bucket)}: "
            f"{len(rows)} corners, {result.based_on_days} days, {result.sample_size} samples"
        )
        return result
