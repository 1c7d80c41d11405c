"""
Simple in-memory TTL cache, used to hold live analysis sessions by id.
"""
import logging
import time
from typing import Optional, Dict, Any
from dataclasses import dataclass
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cache entry with expiration."""
    data: Any
    timestamp: float
    ttl: float  # Time to live in seconds


class SimpleCache:
    """
    Thread-safe in-memory cache with TTL.

    With `sliding=True` every successful `get` restarts the entry's TTL, so
    an entry only expires after `ttl` seconds without being read.
    """

    def __init__(self, default_ttl: float = 3600, sliding: bool = False):
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = Lock()
        self.default_ttl = default_ttl
        self.sliding = sliding

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            now = time.time()
            if now - entry.timestamp > entry.ttl:
                del self._cache[key]
                logger.debug(f"Cache entry expired: {key[:16]}...")
                return None

            if self.sliding:
                entry.timestamp = now
            return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        """Set value in cache with optional TTL, dropping expired entries."""
        with self._lock:
            self._purge_expired(time.time())
            self._cache[key] = CacheEntry(
                data=value,
                timestamp=time.time(),
                ttl=ttl or self.default_ttl
            )
            logger.debug(f"Cache set: {key[:16]}... (TTL: {ttl or self.default_ttl}s)")

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it was present."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self):
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
            logger.info("Cache cleared")

    def cleanup_expired(self) -> int:
        """Remove expired entries. Returns the number removed."""
        with self._lock:
            return self._purge_expired(time.time())

    def _purge_expired(self, now: float) -> int:
        # Caller holds the lock
        expired_keys = [
            key for key, entry in self._cache.items()
            if now - entry.timestamp > entry.ttl
        ]
        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.debug(f"Cleaned up {len(expired_keys)} expired cache entries")
        return len(expired_keys)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        self.cleanup_expired()
        with self._lock:
            return {
                'size': len(self._cache),
                'default_ttl': self.default_ttl,
                'sliding': self.sliding,
            }


_session_cache: Optional[SimpleCache] = None


def get_session_cache() -> SimpleCache:
    """Get the session cache instance (TTL from settings, sliding)."""
    global _session_cache
    if _session_cache is None:
        from insight_chat.core.config import get_settings
        _session_cache = SimpleCache(default_ttl=get_settings().session_ttl_seconds, sliding=True)
    return _session_cache


def reset_session_cache():
    """Drop the session cache instance (for testing)."""
    global _session_cache
    _session_cache = None
