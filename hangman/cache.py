"""
In-memory TTL cache for derived views (currently the leaderboard).

One MemoryCache lives on app.state.cache; nothing here is module-global.
"""

import time
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

LEADERBOARD_KEY = "leaderboard"


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    created_at: float


class MemoryCache:
    """Thread-safe in-memory cache with TTL support"""

    def __init__(self):
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stats = {'hits': 0, 'misses': 0, 'sets': 0, 'evictions': 0}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats['misses'] += 1
                return None
            if time.time() > entry.expires_at:
                del self._cache[key]
                self._stats['misses'] += 1
                self._stats['evictions'] += 1
                return None
            self._stats['hits'] += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float = 3600) -> None:
        with self._lock:
            now = time.time()
            self._cache[key] = CacheEntry(value=value, expires_at=now + ttl_seconds, created_at=now)
            self._stats['sets'] += 1

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._cache if k.startswith(prefix)]
            for k in keys:
                del self._cache[k]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._stats['evictions'] += len(self._cache)
            self._cache.clear()

    def cleanup_expired(self) -> int:
        """Remove all expired entries, return count of removed entries"""
        with self._lock:
            now = time.time()
            expired = [k for k, e in self._cache.items() if now > e.expires_at]
            for k in expired:
                del self._cache[k]
            self._stats['evictions'] += len(expired)
            return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._stats['hits'] + self._stats['misses']
            hit_rate = (self._stats['hits'] / total * 100) if total > 0 else 0
            return {
                **self._stats,
                'total_requests': total,
                'hit_rate_percent': round(hit_rate, 2),
                'cache_size': len(self._cache),
            }


def _leaderboard_key(limit: Optional[int]) -> str:
    return f"{LEADERBOARD_KEY}:{limit}"


def cache_leaderboard(cache: MemoryCache, limit: Optional[int], leaders: List[dict], ttl_minutes: int = 5) -> None:
    cache.set(_leaderboard_key(limit), leaders, ttl_minutes * 60)


def get_cached_leaderboard(cache: MemoryCache, limit: Optional[int]) -> Optional[List[dict]]:
    return cache.get(_leaderboard_key(limit))


def invalidate_leaderboard_cache(cache: MemoryCache) -> int:
    """Drop every cached leaderboard; called whenever a game finishes."""
    return cache.delete_prefix(LEADERBOARD_KEY + ":")
