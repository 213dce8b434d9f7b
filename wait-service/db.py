"""
Database connection and queries for the relational snapshot store
"""
from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    func,
    text,
)
from sqlalchemy.orm import sessionmaker
from contextlib import contextmanager
from functools import lru_cache
from typing import Generator, List, Optional, Sequence
import logging

from config import get_settings
from stores import QueueRecord, parse_partition_key

logger = logging.getLogger(__name__)

settings = get_settings()

metadata = MetaData()

waiting_snapshots = Table(
    "waiting_snapshots",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("restaurant_id", String(64), nullable=False),
    Column("corner_id", String(64), nullable=False),
    Column("timestamp_ms", BigInteger, nullable=False, index=True),
    Column("queue_len", Integer, nullable=False),
    Column("est_wait_time_min", Integer, nullable=True),
    Column("data_type", String(16), nullable=False, server_default="observed"),
    Column("source", String(64), nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("timestamp_ms", "restaurant_id", "corner_id", name="uq_waiting_snapshot"),
)


def get_db_url() -> str:
    """Build PostgreSQL connection URL"""
    return (
        f"postgresql://{settings.DB_USER}:{settings.DB_PASSWORD}"
        f"@{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
    )


@lru_cache()
def get_engine():
    """Process-wide engine, created on first use"""
    timeout_ms = int(settings.DB_QUERY_TIMEOUT_SECONDS * 1000)
    engine = create_engine(
        get_db_url(),
        pool_pre_ping=True,
        pool_size=10,
        connect_args={"options": f"-c statement_timeout={timeout_ms}"},
    )
    logger.info(f"Database engine initialized ({settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME})")
    return engine


@lru_cache()
def get_session_factory():
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


@contextmanager
def get_db(session_factory=None) -> Generator:
    """Get database session context manager"""
    db = (session_factory or get_session_factory())()
    try:
        yield db
    finally:
        db.close()


def init_schema(engine=None) -> None:
    """Create waiting_snapshots if it does not exist"""
    metadata.create_all(engine or get_engine())


_SELECT_RANGE = """
    SELECT
        restaurant_id,
        corner_id,
        timestamp_ms,
        queue_len,
        est_wait_time_min,
        data_type,
        source
    FROM waiting_snapshots
    WHERE restaurant_id = :restaurant_id
        AND corner_id = :corner_id
        AND timestamp_ms BETWEEN :start_ms AND :end_ms
    ORDER BY timestamp_ms {direction}
"""

_UPDATE_SNAPSHOT = text("""
    UPDATE waiting_snapshots
    SET queue_len = :queue_len,
        est_wait_time_min = :est_wait_time_min,
        data_type = :data_type,
        source = :source
    WHERE timestamp_ms = :timestamp_ms
        AND restaurant_id = :restaurant_id
        AND corner_id = :corner_id
""")

_INSERT_SNAPSHOT = text("""
    INSERT INTO waiting_snapshots
        (restaurant_id, corner_id, timestamp_ms, queue_len, est_wait_time_min, data_type, source)
    VALUES
        (:restaurant_id, :corner_id, :timestamp_ms, :queue_len, :est_wait_time_min, :data_type, :source)
""")


class SqlWaitingStore:
    """waiting_snapshots behind the time-series store interface"""

    name = "postgres"

    def __init__(self, session_factory=None, timeout_seconds: float = None):
        self._session_factory = session_factory
        self.timeout_seconds = timeout_seconds or settings.DB_QUERY_TIMEOUT_SECONDS

    def query(
        self,
        partition_key: str,
        start_ms: int,
        end_ms: int,
        limit: Optional[int] = None,
        descending: bool = False,
    ) -> List[QueueRecord]:
        restaurant_id, corner_id = parse_partition_key(partition_key)

        sql = _SELECT_RANGE.format(direction="DESC" if descending else "ASC")
        params = {
            "restaurant_id": restaurant_id,
            "corner_id": corner_id,
            "start_ms": start_ms,
            "end_ms": end_ms,
        }
        if limit is not None:
            sql += "\n    LIMIT :limit"
            params["limit"] = limit

        with get_db(self._session_factory) as db:
            result = db.execute(text(sql), params)
            return [
                QueueRecord(
                    restaurant_id=row.restaurant_id,
                    corner_id=row.corner_id,
                    timestamp_ms=int(row.timestamp_ms),
                    queue_len=int(row.queue_len),
                    est_wait_time_min=row.est_wait_time_min,
                    data_type=row.data_type or "observed",
                    source=row.source,
                )
                for row in result
            ]

    def put(self, records: Sequence[QueueRecord]) -> int:
        """Upsert on (timestamp_ms, restaurant_id, corner_id)"""
        if not records:
            return 0

        with get_db(self._session_factory) as db:
            try:
                for record in records:
                    params = {
                        "restaurant_id": record.restaurant_id,
                        "corner_id": record.corner_id,
                        "timestamp_ms": record.timestamp_ms,
                        "queue_len": record.queue_len,
                        "est_wait_time_min": record.est_wait_time_min,
                        "data_type": record.data_type or "observed",
                        "source": record.source,
                    }
                    updated = db.execute(_UPDATE_SNAPSHOT, params)
                    if updated.rowcount == 0:
                        db.execute(_INSERT_SNAPSHOT, params)
                db.commit()
            except Exception:
                db.rollback()
                raise

        logger.info(f"Upserted {len(records)} snapshots")
        return len(records)

    def check_connection(self) -> bool:
        try:
            with get_db(self._session_factory) as db:
                db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"❌ Database connection check failed: {e}")
            return False
