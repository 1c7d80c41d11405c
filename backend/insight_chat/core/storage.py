"""
Storage abstraction layer for conversation transcripts.

A transcript is the ordered list of turns (as JSON-ready dicts) of one
uploaded file, stored under a key derived from the file name.

Provides pluggable storage backends:
- In-memory (development)
- Redis (production)

Configure via STORAGE_BACKEND environment variable.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List

logger = logging.getLogger(__name__)

Transcript = List[Dict[str, Any]]


class TranscriptStore(ABC):
    """Abstract base class for transcript stores."""

    @abstractmethod
    def get(self, key: str) -> Optional[Transcript]:
        """Get the transcript for key. Returns None if missing or unreadable."""

    @abstractmethod
    def set(self, key: str, turns: Transcript) -> bool:
        """Replace the transcript for key. Returns True on success."""

    @abstractmethod
    def remove(self, key: str) -> bool:
        """Delete the transcript for key. Returns True if deleted."""


class InMemoryTranscriptStore(TranscriptStore):
    """
    In-memory transcript store for development.

    Values are kept serialized so callers never share mutable state with
    the store. NOT suitable for production with multiple workers.
    """

    def __init__(self):
        self._store: Dict[str, str] = {}
        logger.info("Using in-memory transcript store (development only)")

    def get(self, key: str) -> Optional[Transcript]:
        raw = self._store.get(key)
        if raw is None:
            return None
        return _decode(raw, key, on_corrupt=lambda: self._store.pop(key, None))

    def set(self, key: str, turns: Transcript) -> bool:
        try:
            self._store[key] = json.dumps(turns, default=str)
            return True
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to save transcript for key '{key}': {e}")
            return False

    def remove(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def size(self) -> int:
        """Get current store size."""
        return len(self._store)


class RedisTranscriptStore(TranscriptStore):
    """
    Redis transcript store for production.

    Requires redis package and REDIS_URL environment variable.
    """

    def __init__(self, redis_url: str):
        try:
            import redis
            self._client = redis.from_url(redis_url, decode_responses=True)
            self._client.ping()
            logger.info("Connected to Redis transcript store")
        except ImportError:
            raise RuntimeError(
                "Redis storage requires 'redis' package. "
                "Install with: pip install redis"
            )
        except Exception as e:
            raise RuntimeError(f"Failed to connect to Redis: {e}")

    def get(self, key: str) -> Optional[Transcript]:
        try:
            raw = self._client.get(key)
        except Exception as e:
            logger.error(f"Redis get error: {e}")
            return None
        if raw is None:
            return None
        return _decode(raw, key, on_corrupt=lambda: self._client.delete(key))

    def set(self, key: str, turns: Transcript) -> bool:
        try:
            self._client.set(key, json.dumps(turns, default=str))
            return True
        except Exception as e:
            logger.error(f"Redis set error: {e}")
            return False

    def remove(self, key: str) -> bool:
        try:
            return self._client.delete(key) > 0
        except Exception as e:
            logger.error(f"Redis delete error: {e}")
            return False


def _decode(raw: str, key: str, on_corrupt) -> Optional[Transcript]:
    """Parse a stored transcript; corrupt data is removed and reported as missing."""
    try:
        turns = json.loads(raw)
    except ValueError as e:
        logger.error(f"Failed to parse transcript for key '{key}': {e}")
        on_corrupt()
        return None
    if not isinstance(turns, list):
        logger.warning(f"Transcript for key '{key}' is not a list")
        return None
    return turns


# Storage factory
_store_instance: Optional[TranscriptStore] = None


def get_transcript_store() -> TranscriptStore:
    """
    Get the configured transcript store (singleton).

    Configure via environment variables:
    - STORAGE_BACKEND: "memory" (default) or "redis"
    - REDIS_URL: Required if using redis backend
    """
    global _store_instance

    if _store_instance is None:
        from insight_chat.core.config import get_settings
        settings = get_settings()

        if settings.storage_backend == 'redis':
            if not settings.redis_url:
                raise RuntimeError(
                    "REDIS_URL environment variable required for redis storage"
                )
            _store_instance = RedisTranscriptStore(settings.redis_url)
        else:
            _store_instance = InMemoryTranscriptStore()

    return _store_instance


def reset_transcript_store():
    """Reset store instance (for testing)."""
    global _store_instance
    _store_instance = None
