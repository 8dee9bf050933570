import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar


logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 15.0
DEFAULT_MAX_SIZE = 1000
DEFAULT_SWEEP_INTERVAL_SECONDS = 300.0
KEY_LENGTH = 16
LOG_QUERY_LIMIT = 50

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    data: T
    created_at: float
    expires_at: float


class BoundedTTLStore(Generic[T]):
    """Map with per-entry expiry and eviction of the least recently accessed key.

    Synchronous and thread-safe; calls never block on I/O, so code running in
    an event loop can use it directly.
    """

    def __init__(
        self,
        ttl_minutes: float = DEFAULT_TTL_MINUTES,
        max_size: int = DEFAULT_MAX_SIZE,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        start_sweeper: bool = True,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if ttl_minutes <= 0:
            raise ValueError("ttl_minutes must be positive")
        self.ttl_minutes = ttl_minutes
        self.max_size = max_size
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._access_order: Dict[str, int] = {}
        self._access_counter = 0
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        if start_sweeper and sweep_interval_seconds > 0:
            self._sweeper = threading.Thread(target=self._sweep_loop, daemon=True)
            self._sweeper.start()

    def _key(self, raw: str) -> str:
        return raw

    def _label(self, raw: str) -> str:
        return raw[:LOG_QUERY_LIMIT]

    def _touch_locked(self, key: str) -> None:
        self._access_counter += 1
        self._access_order[key] = self._access_counter

    def _remove_locked(self, key: str) -> bool:
        self._access_order.pop(key, None)
        return self._entries.pop(key, None) is not None

    def _evict_lru_locked(self) -> None:
        if len(self._entries) < self.max_size or not self._access_order:
            return
        lru_key = min(self._access_order, key=self._access_order.__getitem__)
        self._remove_locked(lru_key)
        logger.debug("evicted least recently used entry %s", lru_key)

    def get(self, raw: str) -> Optional[T]:
        key = self._key(raw)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("cache miss: %s", self._label(raw))
                return None
            now = self._clock()
            if now >= entry.expires_at:
                self._remove_locked(key)
                logger.debug("cache expired: %s", self._label(raw))
                return None
            self._touch_locked(key)
            logger.debug(
                "cache hit: %s (age %d min)",
                self._label(raw),
                round((now - entry.created_at) / 60),
            )
            return entry.data

    def set(self, raw: str, data: Optional[T]) -> None:
        if data is None:
            return
        key = self._key(raw)
        with self._lock:
            now = self._clock()
            if key not in self._entries:
                self._evict_lru_locked()
            self._entries[key] = CacheEntry(
                data=data,
                created_at=now,
                expires_at=now + self.ttl_minutes * 60,
            )
            self._touch_locked(key)
        logger.debug("cache stored: %s (expires in %s min)", self._label(raw), self.ttl_minutes)

    def delete(self, raw: str) -> bool:
        key = self._key(raw)
        with self._lock:
            existed = self._remove_locked(key)
        if existed:
            logger.debug("cache deleted: %s", self._label(raw))
        return existed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._access_order.clear()
            self._access_counter = 0
        logger.debug("cache cleared")

    def cleanup_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                self._remove_locked(key)
        if expired:
            logger.debug("swept %d expired entries", len(expired))
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            created = [entry.created_at for entry in self._entries.values()]
            total = len(self._entries)
        return {
            "total_entries": total,
            "max_size": self.max_size,
            "ttl_minutes": self.ttl_minutes,
            "oldest_entry_age_minutes": round((now - min(created)) / 60) if created else 0,
            "newest_entry_age_minutes": round((now - max(created)) / 60) if created else 0,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval_seconds):
            self.cleanup_expired()

    def close(self) -> None:
        self._stop.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=1)


class WebDataCache(BoundedTTLStore[str]):
    """Shields rate-limited lookups; keys are hashes of the normalized query."""

    @staticmethod
    def normalize_query(query: str) -> str:
        if not isinstance(query, str):
            raise TypeError(f"query must be str, got {type(query).__name__}")
        return " ".join(query.lower().split())

    def _key(self, raw: str) -> str:
        normalized = self.normalize_query(raw)
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:KEY_LENGTH]

    def get_or_fetch(self, query: str, fetch: Callable[[], Optional[str]]) -> Optional[str]:
        cached = self.get(query)
        if cached is not None:
            return cached
        data = fetch()
        if data:
            self.set(query, data)
        return data


class DocumentStore(BoundedTTLStore[Dict[str, Any]]):
    """Holds uploaded documents between the upload and analyze requests."""

    def __init__(
        self,
        ttl_minutes: float = 60.0,
        max_size: int = 100,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        start_sweeper: bool = True,
    ) -> None:
        super().__init__(
            ttl_minutes=ttl_minutes,
            max_size=max_size,
            sweep_interval_seconds=sweep_interval_seconds,
            clock=clock,
            start_sweeper=start_sweeper,
        )

    def _key(self, raw: str) -> str:
        if not isinstance(raw, str) or not raw:
            raise TypeError("document id must be a non-empty str")
        return raw
