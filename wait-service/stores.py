"""
Time-series stores for queue snapshots

Every store answers the same range query over one corner partition:

    query(partition_key, start_ms, end_ms, limit=None, descending=False)

Partition keys look like "CORNER#{restaurant_id}#{corner_id}" and time is
epoch milliseconds. The live stores also take put(records) for ingestion;
the S3 archive is read-only and has no put. Store clients are created once
per process and reused.
"""
import json
import logging
import threading
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.config import Config
from botocore.exceptions import ClientError

from cache import TTLCache
from config import get_settings
from date_utils import (
    add_days,
    epoch_millis_to_date_key,
    epoch_millis_to_iso,
    iso_to_epoch_millis,
)
from exceptions import InvalidInput

logger = logging.getLogger(__name__)

settings = get_settings()

PARTITION_PREFIX = "CORNER"
DDB_BATCH_SIZE = 25


@dataclass(frozen=True)
class QueueRecord:
    """Minimal record shape every store returns"""
    restaurant_id: str
    corner_id: str
    timestamp_ms: int
    queue_len: int
    est_wait_time_min: Optional[int] = None
    data_type: str = "observed"
    source: Optional[str] = None


class TimeSeriesStore(Protocol):
    name: str
    timeout_seconds: float

    def query(
        self,
        partition_key: str,
        start_ms: int,
        end_ms: int,
        limit: Optional[int] = None,
        descending: bool = False,
    ) -> List[QueueRecord]:
        ...


def build_partition_key(restaurant_id: str, corner_id: str) -> str:
    return f"{PARTITION_PREFIX}#{restaurant_id}#{corner_id}"


def parse_partition_key(partition_key: str) -> Tuple[str, str]:
    parts = partition_key.split("#")
    if len(parts) != 3 or parts[0] != PARTITION_PREFIX:
        raise InvalidInput(f"Invalid partition key: {partition_key!r}")
    return parts[1], parts[2]


def select_range(
    records: Sequence[QueueRecord],
    start_ms: int,
    end_ms: int,
    limit: Optional[int] = None,
    descending: bool = False,
) -> List[QueueRecord]:
    """Apply range, order and limit the way a sorted-key store would"""
    in_range = [r for r in records if start_ms <= r.timestamp_ms <= end_ms]
    in_range.sort(key=lambda r: r.timestamp_ms, reverse=descending)
    if limit is not None:
        in_range = in_range[:limit]
    return in_range


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return int(value)
    return int(float(value))


# =============================================================================
# DynamoDB (live store)
# =============================================================================

_ddb_client = None
_ddb_lock = threading.Lock()


def get_ddb_client():
    """Process-wide DynamoDB client, created on first use"""
    global _ddb_client
    with _ddb_lock:
        if _ddb_client is None:
            config = Config(
                region_name=settings.AWS_REGION,
                retries={"max_attempts": 3, "mode": "standard"},
                connect_timeout=settings.DDB_QUERY_TIMEOUT_SECONDS,
                read_timeout=settings.DDB_QUERY_TIMEOUT_SECONDS,
            )
            _ddb_client = boto3.client("dynamodb", config=config)
            logger.info(f"DynamoDB client initialized (region={settings.AWS_REGION})")
        return _ddb_client


class DynamoDBWaitingStore:
    """Live queue snapshots, one item per (corner, timestamp), sk = epoch ms string"""

    name = "ddb"

    def __init__(self, client=None, table_name: str = None, timeout_seconds: float = None):
        self._client = client
        self.table_name = table_name or settings.DDB_TABLE_WAITING
        self.timeout_seconds = timeout_seconds or settings.DDB_QUERY_TIMEOUT_SECONDS
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    @property
    def client(self):
        if self._client is None:
            self._client = get_ddb_client()
        return self._client

    def _deserialize(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {k: self._deserializer.deserialize(v) for k, v in item.items()}

    def _to_record(self, item: Dict[str, Any]) -> QueueRecord:
        return QueueRecord(
            restaurant_id=item["restaurantId"],
            corner_id=item["cornerId"],
            timestamp_ms=_to_int(item["sk"]),
            queue_len=_to_int(item.get("queueLen", 0)),
            est_wait_time_min=_to_int(item.get("estWaitTimeMin")),
            data_type=item.get("dataType") or "observed",
            source=item.get("source"),
        )

    def query(self, partition_key, start_ms, end_ms, limit=None, descending=False):
        params = {
            "TableName": self.table_name,
            "KeyConditionExpression": "pk = :pk AND sk BETWEEN :start AND :end",
            "ExpressionAttributeValues": {
                ":pk": {"S": partition_key},
                ":start": {"S": str(start_ms)},
                ":end": {"S": str(end_ms)},
            },
            "ScanIndexForward": not descending,
        }
        if limit is not None:
            params["Limit"] = limit

        records: List[QueueRecord] = []
        while True:
            response = self.client.query(**params)
            records.extend(self._to_record(self._deserialize(item)) for item in response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key or (limit is not None and len(records) >= limit):
                break
            params["ExclusiveStartKey"] = last_key

        return records[:limit] if limit is not None else records

    def put(self, records: Sequence[QueueRecord]) -> int:
        """Write snapshots in batches of 25; items expire after DDB_TTL_DAYS"""
        if not records:
            return 0

        now = time.time()
        ttl = int(now) + settings.DDB_TTL_DAYS * 24 * 60 * 60
        created_at_iso = epoch_millis_to_iso(int(now * 1000))

        requests = []
        for record in records:
            item = {
                "pk": build_partition_key(record.restaurant_id, record.corner_id),
                "sk": str(record.timestamp_ms),
                "restaurantId": record.restaurant_id,
                "cornerId": record.corner_id,
                "queueLen": record.queue_len,
                "dataType": record.data_type or "observed",
                "timestampIso": epoch_millis_to_iso(record.timestamp_ms),
                "createdAtIso": created_at_iso,
                "ttl": ttl,
            }
            if record.est_wait_time_min is not None:
                item["estWaitTimeMin"] = record.est_wait_time_min
            if record.source:
                item["source"] = record.source
            serialized = {k: self._serializer.serialize(v) for k, v in item.items()}
            requests.append({"PutRequest": {"Item": serialized}})

        inserted = 0
        for i in range(0, len(requests), DDB_BATCH_SIZE):
            batch = requests[i:i + DDB_BATCH_SIZE]
            try:
                response = self.client.batch_write_item(RequestItems={self.table_name: batch})
            except ClientError as e:
                logger.error(f"❌ BatchWrite batch {i // DDB_BATCH_SIZE} failed: {e}")
                continue
            unprocessed = len(response.get("UnprocessedItems", {}).get(self.table_name, []))
            inserted += len(batch) - unprocessed

        logger.info(f"putSnapshots: inserted={inserted} total={len(requests)}")
        return inserted

    def check_connection(self) -> bool:
        try:
            self.client.query(
                TableName=self.table_name,
                KeyConditionExpression="pk = :pk",
                ExpressionAttributeValues={":pk": {"S": "HEALTH_CHECK"}},
                Limit=1,
            )
            return True
        except Exception as e:
            logger.error(f"❌ DynamoDB connection check failed: {e}")
            return False


# =============================================================================
# S3 (archive store)
# =============================================================================

_s3_client = None
_s3_lock = threading.Lock()


def get_s3_client():
    """Process-wide S3 client, created on first use"""
    global _s3_client
    with _s3_lock:
        if _s3_client is None:
            config = Config(
                region_name=settings.AWS_REGION,
                retries={"max_attempts": 3, "mode": "standard"},
                connect_timeout=settings.S3_TIMEOUT_SECONDS,
                read_timeout=settings.S3_TIMEOUT_SECONDS,
            )
            _s3_client = boto3.client("s3", config=config)
            logger.info(f"S3 client initialized (region={settings.AWS_REGION})")
        return _s3_client


def is_missing_object_error(error: ClientError) -> bool:
    code = error.response.get("Error", {}).get("Code")
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in ("NoSuchKey", "404") or status == 404


class S3ArchiveStore:
    """
    Archived snapshots, one JSON array per day at waiting-data/{date}.json.

    Read-only: the objects are written by the export job. Whole days are
    cached (TTL + entry limit) so the per-corner fan-out reads the object once.
    """

    name = "s3"

    def __init__(self, client=None, bucket: str = None, timeout_seconds: float = None, cache: TTLCache = None):
        self._client = client
        self.bucket = bucket or settings.S3_BUCKET_WAITING
        self.timeout_seconds = timeout_seconds or settings.S3_TIMEOUT_SECONDS
        self.cache = cache if cache is not None else TTLCache(
            ttl_seconds=settings.WAITING_CACHE_TTL_SECONDS,
            max_entries=settings.WAITING_CACHE_MAX_ENTRIES,
        )
        self._fetch_lock = threading.Lock()

    @property
    def client(self):
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    @staticmethod
    def object_key(date_key: str) -> str:
        return f"waiting-data/{date_key}.json"

    @staticmethod
    def _to_record(item: Dict[str, Any]) -> QueueRecord:
        timestamp = item.get("timestampIso") or item["timestamp"]
        return QueueRecord(
            restaurant_id=item["restaurantId"],
            corner_id=item["cornerId"],
            timestamp_ms=iso_to_epoch_millis(timestamp),
            queue_len=_to_int(item.get("queueLen", item.get("queue_len", 0))),
            est_wait_time_min=_to_int(item.get("estWaitTimeMin", item.get("est_wait_time_min"))),
            data_type=item.get("dataType") or "archived",
            source=item.get("source"),
        )

    def load_day(self, date_key: str) -> List[QueueRecord]:
        """All records of one day; empty list when the day has no object"""
        cached = self.cache.get(date_key)
        if cached is not None:
            return cached

        with self._fetch_lock:
            cached = self.cache.get(date_key)
            if cached is not None:
                return cached

            key = self.object_key(date_key)
            try:
                response = self.client.get_object(Bucket=self.bucket, Key=key)
            except ClientError as e:
                if is_missing_object_error(e):
                    logger.warning(f"⚠️  No archive object for {date_key} (404)")
                    self.cache.set(date_key, [])
                    return []
                raise

            body = response["Body"].read().decode("utf-8")
            raw = json.loads(body)
            if not isinstance(raw, list):
                raise ValueError(f"Archive object {key} is not a JSON array")

            records = [self._to_record(item) for item in raw]
            self.cache.set(date_key, records)
            logger.info(f"Fetched {len(records)} archived items for {date_key}")
            return records

    def query(self, partition_key, start_ms, end_ms, limit=None, descending=False):
        restaurant_id, corner_id = parse_partition_key(partition_key)

        date_key = epoch_millis_to_date_key(start_ms)
        last_date_key = epoch_millis_to_date_key(end_ms)
        candidates: List[QueueRecord] = []
        while date_key <= last_date_key:
            candidates.extend(
                r for r in self.load_day(date_key)
                if r.restaurant_id == restaurant_id and r.corner_id == corner_id
            )
            date_key = add_days(date_key, 1)

        return select_range(candidates, start_ms, end_ms, limit, descending)

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
