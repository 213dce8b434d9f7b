"""
Daily menus from S3 (menus/{date}.json)

The menu object maps restaurantId -> cornerId -> menu item. The schedule
engine only asks has_menu(); /api/menu serves the whole object through
read_menus(), which keeps "disabled", "missing" and "found" apart.
"""
import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence

from botocore.exceptions import ClientError

from cache import TTLCache
from config import get_settings
from date_utils import parse_date_key
from stores import get_s3_client, is_missing_object_error

logger = logging.getLogger(__name__)

settings = get_settings()


class MenuStatus(str, Enum):
    FOUND = "found"
    NOT_AVAILABLE = "not_available"
    DISABLED = "disabled"


@dataclass(frozen=True)
class MenuRead:
    date_key: str
    status: MenuStatus
    menus: Dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None


class MenuService:
    def __init__(self, client=None, bucket: str = None, enabled: Optional[bool] = None, cache: TTLCache = None):
        self._client = client
        self.bucket = bucket or settings.S3_BUCKET
        self.enabled = settings.MENU_SOURCE == "s3" if enabled is None else enabled
        self.cache = cache if cache is not None else TTLCache(
            ttl_seconds=settings.MENU_CACHE_TTL_SECONDS,
            max_entries=settings.MENU_CACHE_MAX_ENTRIES,
            enabled=settings.MENU_CACHE_ENABLED,
        )
        self._fetch_lock = threading.Lock()

    @property
    def client(self):
        if self._client is None:
            self._client = get_s3_client()
        return self._client

    @staticmethod
    def object_key(date_key: str) -> str:
        return f"menus/{date_key}.json"

    def read_menus(self, date_key: str) -> MenuRead:
        """
        Menu object for a date with the outcome spelled out.

        Missing objects are cached like found ones; read failures are not.

        Raises:
            InvalidDateKey: if date_key is not a real YYYY-MM-DD date
        """
        parse_date_key(date_key)
        if not self.enabled:
            return MenuRead(date_key, MenuStatus.DISABLED, message="Menu data source is not configured (MENU_SOURCE != s3).")

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
                menus = json.loads(response["Body"].read().decode("utf-8"))
            except ClientError as e:
                if is_missing_object_error(e):
                    logger.info(f"No menu object for {date_key}")
                    read = MenuRead(date_key, MenuStatus.NOT_AVAILABLE, message=f"Menu data not found in S3: {key}")
                    self.cache.set(date_key, read)
                    return read
                logger.warning(f"⚠️  Menu fetch failed for {date_key}: {e}")
                return MenuRead(date_key, MenuStatus.NOT_AVAILABLE, message=f"Menu fetch failed: {e}")
            except ValueError as e:
                logger.warning(f"⚠️  Menu object for {date_key} is not valid JSON: {e}")
                return MenuRead(date_key, MenuStatus.NOT_AVAILABLE, message=f"Menu object {key} is not valid JSON")

            if not isinstance(menus, dict):
                logger.warning(f"⚠️  Menu object for {date_key} is not a JSON object")
                return MenuRead(date_key, MenuStatus.NOT_AVAILABLE, message=f"Menu object {key} is not a JSON object")

            read = MenuRead(date_key, MenuStatus.FOUND, menus)
            self.cache.set(date_key, read)
            return read

    def get_menus(self, date_key: str) -> Dict[str, Dict[str, Any]]:
        """Menus for a date; {} unless the object was found"""
        return self.read_menus(date_key).menus

    def has_menu(self, restaurant_id: str, corner_id: str, date_key: str) -> bool:
        corners = self.get_menus(date_key).get(restaurant_id) or {}
        return bool(corners.get(corner_id))

    def menu_presence_for(self, restaurant_id: str, corner_ids: Sequence[str], date_key: str) -> Dict[str, bool]:
        corners = self.get_menus(date_key).get(restaurant_id) or {}
        return {corner_id: bool(corners.get(corner_id)) for corner_id in corner_ids}

    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
