"""TTL cache used for fetched price series."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class CacheInterface(ABC):
    """Abstract cache interface."""

    @abstractmethod
    def get(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[Any]:
        """Return the cached value, or None when missing or older than the TTL."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store value in cache."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""

    @abstractmethod
    def cleanup(self, ttl_seconds: Optional[int] = None) -> int:
        """Remove expired items, return count of removed items."""


class InMemoryCache(CacheInterface):
    """Process-local cache keyed by string, entries expire by age."""

    def __init__(self, default_ttl: int = 600):
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self.default_ttl = default_ttl

    def _expired(self, stored_at: float, ttl_seconds: Optional[int]) -> bool:
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        return time.monotonic() - stored_at > ttl

    def get(self, key: str, ttl_seconds: Optional[int] = None) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, stored_at = entry
        if self._expired(stored_at, ttl_seconds):
            self._entries.pop(key, None)
            logger.debug("Cache miss (expired): %s", key)
            return None

        logger.debug("Cache hit: %s", key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (value, time.monotonic())
        logger.debug("Cache set: %s", key)

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cache cleared: %d items removed", count)

    def cleanup(self, ttl_seconds: Optional[int] = None) -> int:
        expired = [
            key for key, (_, stored_at) in self._entries.items()
            if self._expired(stored_at, ttl_seconds)
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info("Cache cleanup: %d items removed", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
