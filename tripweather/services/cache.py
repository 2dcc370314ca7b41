import copy
import json
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import redis


@dataclass
class CacheResult:
    value: Any
    hit: bool
    age_seconds: Optional[int]
    stale: bool = False


MISS = CacheResult(value=None, hit=False, age_seconds=None)


@dataclass
class CacheEntry:
    data: Any
    stored_at: float
    expires_at: float


class TTLCache:
    """
    In-process key -> value store with per-entry expiry.

    Expired entries are dropped when read; there is no sweeper. Values are
    deep-copied in and out so callers never hold the stored object.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheResult:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISS
            now = self._clock()
            if now >= entry.expires_at:
                del self._entries[key]
                return MISS
            data = copy.deepcopy(entry.data)
            age = int(now - entry.stored_at)
        return CacheResult(value=data, hit=True, age_seconds=max(0, age))

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        now = self._clock()
        entry = CacheEntry(data=copy.deepcopy(value), stored_at=now, expires_at=now + ttl_seconds)
        with self._lock:
            self._entries[key] = entry

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def close(self) -> None:
        self.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisCache:
    """
    Same contract as TTLCache, shared between worker processes.

    Stores JSON payload + metadata:
      key -> {"stored_at": <unix>, "payload": ...}
    Redis owns expiry through SETEX.
    """

    def __init__(self, redis_url: str, prefix: str = "tripweather"):
        self.client = redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix

    def _k(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> CacheResult:
        raw = self.client.get(self._k(key))
        if not raw:
            return MISS

        try:
            obj = json.loads(raw)
        except ValueError:
            # Unreadable entry; drop it so the next write replaces it.
            self.invalidate(key)
            return MISS
        stored_at = int(obj.get("stored_at", 0))
        age = max(0, int(time.time()) - stored_at)
        return CacheResult(value=obj.get("payload"), hit=True, age_seconds=age)

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        obj = {"stored_at": int(time.time()), "payload": value}
        self.client.setex(self._k(key), max(1, int(ttl_seconds)), json.dumps(obj))

    def invalidate(self, key: str) -> None:
        self.client.delete(self._k(key))

    def clear(self) -> None:
        for key in self.client.scan_iter(match=f"{self.prefix}:*"):
            self.client.delete(key)

    def close(self) -> None:
        self.client.close()


def rounded_coords(lat: float, lng: float, decimals: int) -> Tuple[float, float]:
    return (round(lat, decimals), round(lng, decimals))


def cache_key(kind: str, lat: float, lng: float, decimals: int, *extra: Any) -> str:
    """
    Build a cache key from the data kind, the location and extra params.

    The location is rounded to ``decimals`` places first, so nearby queries
    (two decimals is roughly 1 km) share an entry. Slightly coarser position
    is accepted in exchange for the higher hit rate.
    """
    rlat, rlng = rounded_coords(lat, lng, decimals)
    parts = [kind, f"{rlat:.{decimals}f}", f"{rlng:.{decimals}f}"]
    parts.extend(str(e) for e in extra)
    return ":".join(parts)


def build_cache(settings):
    if settings.redis_url:
        return RedisCache(settings.redis_url)
    return TTLCache()
