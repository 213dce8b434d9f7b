"""
Tests for store adapters: record mapping, paging, caching and upserts
"""
import io
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cache import TTLCache
from conftest import TODAY, kst_ms, record
from db import SqlWaitingStore, init_schema
from exceptions import InvalidInput
from menu_service import MenuService, MenuStatus
from stores import (
    DynamoDBWaitingStore,
    S3ArchiveStore,
    build_partition_key,
    parse_partition_key,
)

PK = "CORNER#hanyang_plaza#western"


def client_error(code, operation="GetObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def s3_body(payload):
    return {"Body": io.BytesIO(json.dumps(payload).encode("utf-8"))}


def test_partition_keys():
    assert build_partition_key("hanyang_plaza", "western") == PK
    assert parse_partition_key(PK) == ("hanyang_plaza", "western")
    for bad in ["hanyang_plaza#western", "ROW#a#b", "CORNER#a#b#c"]:
        with pytest.raises(InvalidInput):
            parse_partition_key(bad)


# =============================================================================
# DynamoDB
# =============================================================================

def ddb_item(timestamp_ms, queue_len, est=None):
    item = {
        "pk": {"S": PK},
        "sk": {"S": str(timestamp_ms)},
        "restaurantId": {"S": "hanyang_plaza"},
        "cornerId": {"S": "western"},
        "queueLen": {"N": str(queue_len)},
    }
    if est is not None:
        item["estWaitTimeMin"] = {"N": str(est)}
    return item


def test_ddb_query_pages_and_maps_records():
    t1, t2 = kst_ms(TODAY, 12, 0), kst_ms(TODAY, 12, 1)
    client = MagicMock()
    client.query.side_effect = [
        {"Items": [ddb_item(t1, 5, est=2)], "LastEvaluatedKey": {"pk": {"S": PK}, "sk": {"S": str(t1)}}},
        {"Items": [ddb_item(t2, 7)]},
    ]
    store = DynamoDBWaitingStore(client=client, table_name="waiting")

    records = store.query(PK, t1, t2)

    assert [(r.timestamp_ms, r.queue_len, r.est_wait_time_min) for r in records] == [(t1, 5, 2), (t2, 7, None)]
    assert all(r.data_type == "observed" for r in records)
    first_call = client.query.call_args_list[0].kwargs
    assert first_call["TableName"] == "waiting"
    assert first_call["ExpressionAttributeValues"][":start"] == {"S": str(t1)}
    assert first_call["ScanIndexForward"] is True
    assert client.query.call_args_list[1].kwargs["ExclusiveStartKey"]["sk"] == {"S": str(t1)}


def test_ddb_latest_query_uses_limit_and_descending():
    client = MagicMock()
    client.query.return_value = {"Items": [ddb_item(kst_ms(TODAY, 12, 0), 5)]}
    store = DynamoDBWaitingStore(client=client, table_name="waiting")

    records = store.query(PK, 0, 1, limit=1, descending=True)

    assert len(records) == 1
    kwargs = client.query.call_args.kwargs
    assert kwargs["Limit"] == 1
    assert kwargs["ScanIndexForward"] is False


def test_ddb_put_batches_of_25_with_ttl():
    client = MagicMock()
    client.batch_write_item.return_value = {"UnprocessedItems": {}}
    store = DynamoDBWaitingStore(client=client, table_name="waiting")
    records = [record("hanyang_plaza", "western", kst_ms(TODAY, 12, 0) + i, i) for i in range(30)]

    assert store.put(records) == 30
    assert client.batch_write_item.call_count == 2

    first_batch = client.batch_write_item.call_args_list[0].kwargs["RequestItems"]["waiting"]
    assert len(first_batch) == 25
    item = first_batch[0]["PutRequest"]["Item"]
    assert item["pk"] == {"S": PK}
    assert item["sk"] == {"S": str(kst_ms(TODAY, 12, 0))}
    assert item["timestampIso"] == {"S": "2026-01-15T12:00:00+09:00"}
    assert "ttl" in item


def test_ddb_put_counts_unprocessed_items():
    client = MagicMock()
    client.batch_write_item.side_effect = lambda RequestItems: {
        "UnprocessedItems": {"waiting": RequestItems["waiting"][:2]}
    }
    store = DynamoDBWaitingStore(client=client, table_name="waiting")
    records = [record("hanyang_plaza", "western", i, 1) for i in range(5)]
    assert store.put(records) == 3
    assert store.put([]) == 0


# =============================================================================
# S3 archive
# =============================================================================

def archive_payload():
    return [
        {"timestampIso": "2026-01-14T12:00:00+09:00", "restaurantId": "hanyang_plaza",
         "cornerId": "western", "queueLen": 5, "estWaitTimeMin": 2},
        {"timestamp": "2026-01-14T12:05:00+09:00", "restaurantId": "hanyang_plaza",
         "cornerId": "western", "queueLen": 8},
        {"timestampIso": "2026-01-14T12:00:00+09:00", "restaurantId": "hanyang_plaza",
         "cornerId": "korean", "queueLen": 1},
    ]


def test_s3_archive_maps_filters_and_caches():
    client = MagicMock()
    client.get_object.side_effect = lambda Bucket, Key: s3_body(archive_payload())
    store = S3ArchiveStore(client=client, bucket="archive", cache=TTLCache(60, 5))
    start_ms, end_ms = kst_ms("2026-01-14", 0, 0), kst_ms("2026-01-15", 0, 0) - 1

    records = store.query(PK, start_ms, end_ms)
    assert [(r.queue_len, r.est_wait_time_min) for r in records] == [(5, 2), (8, None)]
    assert all(r.data_type == "archived" for r in records)

    latest = store.query(PK, start_ms, end_ms, limit=1, descending=True)
    assert [r.queue_len for r in latest] == [8]

    client.get_object.assert_called_once_with(Bucket="archive", Key="waiting-data/2026-01-14.json")
    assert store.cache_stats()["size"] == 1


def test_s3_missing_object_is_empty():
    client = MagicMock()
    client.get_object.side_effect = client_error("NoSuchKey")
    store = S3ArchiveStore(client=client, bucket="archive", cache=TTLCache(60, 5))
    assert store.query(PK, kst_ms("2026-01-14", 0, 0), kst_ms("2026-01-14", 23, 59)) == []


def test_s3_other_errors_propagate():
    client = MagicMock()
    client.get_object.side_effect = client_error("AccessDenied")
    store = S3ArchiveStore(client=client, bucket="archive", cache=TTLCache(60, 5))
    with pytest.raises(ClientError):
        store.query(PK, kst_ms("2026-01-14", 0, 0), kst_ms("2026-01-14", 23, 59))
    assert store.cache_stats()["size"] == 0


# =============================================================================
# Relational store
# =============================================================================

@pytest.fixture
def sql_store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_schema(engine)
    return SqlWaitingStore(session_factory=sessionmaker(bind=engine), timeout_seconds=1.0)


def test_sql_put_and_query(sql_store):
    t1, t2, t3 = kst_ms(TODAY, 12, 0), kst_ms(TODAY, 12, 5), kst_ms(TODAY, 12, 10)
    inserted = sql_store.put([
        record("hanyang_plaza", "western", t1, 3),
        record("hanyang_plaza", "western", t2, 4, est=9),
        record("hanyang_plaza", "western", t3, 5),
        record("hanyang_plaza", "korean", t2, 6),
    ])
    assert inserted == 4

    records = sql_store.query(PK, t1, t2)
    assert [(r.timestamp_ms, r.queue_len, r.est_wait_time_min) for r in records] == [(t1, 3, None), (t2, 4, 9)]

    latest = sql_store.query(PK, t1, t3, limit=1, descending=True)
    assert [r.timestamp_ms for r in latest] == [t3]


def test_sql_put_upserts_on_timestamp_and_corner(sql_store):
    t1 = kst_ms(TODAY, 12, 0)
    sql_store.put([record("hanyang_plaza", "western", t1, 3)])
    sql_store.put([record("hanyang_plaza", "western", t1, 11, est=5)])

    records = sql_store.query(PK, t1, t1)
    assert len(records) == 1
    assert records[0].queue_len == 11
    assert records[0].est_wait_time_min == 5


def test_sql_check_connection(sql_store):
    assert sql_store.check_connection() is True


# =============================================================================
# Menus
# =============================================================================

def test_menu_presence():
    client = MagicMock()
    client.get_object.side_effect = lambda Bucket, Key: s3_body({
        "hanyang_plaza": {"cupbap": {"mainMenuName": "제육컵밥", "priceWon": 4000}, "ramen": None},
    })
    menus = MenuService(client=client, bucket="menus", enabled=True, cache=TTLCache(60, 5))

    assert menus.has_menu("hanyang_plaza", "cupbap", TODAY) is True
    assert menus.has_menu("hanyang_plaza", "ramen", TODAY) is False
    assert menus.has_menu("materials", "rice_bowl", TODAY) is False
    assert menus.menu_presence_for("hanyang_plaza", ["cupbap", "western"], TODAY) == {
        "cupbap": True,
        "western": False,
    }
    client.get_object.assert_called_once_with(Bucket="menus", Key="menus/2026-01-15.json")


def test_menu_disabled_or_unreachable_answers_false():
    client = MagicMock()
    disabled = MenuService(client=client, enabled=False, cache=TTLCache(60, 5))
    assert disabled.has_menu("hanyang_plaza", "cupbap", TODAY) is False
    client.get_object.assert_not_called()

    client.get_object.side_effect = client_error("AccessDenied")
    failing = MenuService(client=client, enabled=True, cache=TTLCache(60, 5))
    assert failing.has_menu("hanyang_plaza", "cupbap", TODAY) is False
    # failures are not cached
    assert failing.cache_stats()["size"] == 0


def test_menu_read_keeps_outcomes_apart():
    client = MagicMock()
    client.get_object.side_effect = lambda Bucket, Key: s3_body({})
    found = MenuService(client=client, enabled=True, cache=TTLCache(60, 5)).read_menus(TODAY)
    assert found.status == MenuStatus.FOUND
    assert found.menus == {}

    client.get_object.side_effect = client_error("NoSuchKey")
    missing = MenuService(client=client, enabled=True, cache=TTLCache(60, 5)).read_menus(TODAY)
    assert missing.status == MenuStatus.NOT_AVAILABLE

    disabled = MenuService(client=client, enabled=False, cache=TTLCache(60, 5)).read_menus(TODAY)
    assert disabled.status == MenuStatus.DISABLED
    assert disabled.menus == {}


def test_s3_archive_is_read_only():
    store = S3ArchiveStore(client=MagicMock(), bucket="archive", cache=TTLCache(60, 5))
    assert not hasattr(store, "put")
