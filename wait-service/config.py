"""
Configuration for the Wait-Time Service
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings"""

    # Timezone used for date keys, day boundaries and rendered timestamps
    TIMEZONE: str = "Asia/Seoul"

    # Logging
    LOG_LEVEL: str = "INFO"

    # AWS
    AWS_REGION: str = "ap-northeast-2"

    # Live store ("today" reads): "ddb", "postgres" or "disabled"
    WAITING_SOURCE: str = "ddb"
    DDB_TABLE_WAITING: str = "hyeat_YOLO_data"
    DDB_QUERY_TIMEOUT_SECONDS: float = 5.0
    DDB_TTL_DAYS: int = 90  # Item expiry for live snapshots

    # Archive store (past/future dates): "s3", "postgres" or "disabled"
    ARCHIVE_SOURCE: str = "s3"
    S3_BUCKET_WAITING: str = "hyeat-menu-dev"
    S3_TIMEOUT_SECONDS: float = 3.0
    WAITING_CACHE_TTL_SECONDS: int = 300
    WAITING_CACHE_MAX_ENTRIES: int = 20

    # Menu source (menu-presence oracle): "s3" or "disabled"
    MENU_SOURCE: str = "disabled"
    S3_BUCKET: str = "hyeat-menu"
    MENU_CACHE_ENABLED: bool = False
    MENU_CACHE_TTL_SECONDS: int = 60
    MENU_CACHE_MAX_ENTRIES: int = 50

    # Relational historical store
    DB_HOST: str = "postgres"
    DB_PORT: int = 5432
    DB_NAME: str = "hyeat"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_QUERY_TIMEOUT_SECONDS: float = 5.0

    # Live data older than this is reported as "no data"
    WAITING_STALE_SECONDS: int = 90

    # Prediction: number of past same-weekday occurrences to average
    PREDICTION_LOOKBACK_WEEKS: int = 4

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
