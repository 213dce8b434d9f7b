"""
Small TTL cache with a hard entry limit and hit/miss counters

When full, the entry inserted earliest is evicted (not the least recently
read). Safe to share between request threads.
"""
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple


class TTLCache:
    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.enabled = enabled
        self._clock = clock
        # key -> (value, expires_at, inserted_at)
        self._entries: Dict[str, Tuple[Any, float, float]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            value, expires_at, _ = entry
            if self._clock() > expires_at:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return value

    def set(self, key: str, value: Any) -> None:
        if not self.enabled:
            return
        with self._lock:
            now = self._clock()
            expired = [k for k, (_, expires_at, _) in self._entries.items() if now > expires_at]
            for k in expired:
                del self._entries[k]

            if key not in self._entries and len(self._entries) >= self.max_entries:
                oldest_key = min(self._entries, key=lambda k: self._entries[k][2])
                del self._entries[oldest_key]

            self._entries[key] = (value, now + self.ttl_seconds, now)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "size": len(self),
            "ttlSeconds": self.ttl_seconds,
            "maxEntries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
        }
