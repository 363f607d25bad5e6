"""
Result Cache — decisions keyed by idempotency key.

InMemoryResultCache: process-local, bounded, lazy expiry.
RedisResultCache:    shared across workers, JSON payloads with SET ... EX.

Both clamp TTLs to the configured maximum. Lookups are exact-match on the
idempotency key; nothing else about the request is part of the key.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from riskgate.config import Settings, settings as default_settings
from riskgate.exceptions import CacheUnavailableError
from riskgate.schemas.decision import Decision

logger = structlog.get_logger(__name__)


class ResultCache(ABC):

    def __init__(self, default_ttl: float = 900.0, max_ttl: float = 3600.0):
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl

    def effective_ttl(self, ttl: Optional[float]) -> float:
        value = self.default_ttl if ttl is None else ttl
        return max(0.0, min(value, self.max_ttl))

    @abstractmethod
    async def get(self, key: str) -> Optional[Decision]:
        """Cached decision or None. Raises CacheUnavailableError on backend failure."""

    @abstractmethod
    async def put(self, key: str, decision: Decision, ttl: Optional[float] = None) -> None:
        """Store a decision. Raises CacheUnavailableError on backend failure."""


class InMemoryResultCache(ResultCache):
    """
    Bounded in-process cache.

    Expired entries are dropped when read. When full, the entry closest to
    expiry is evicted, and only then.
    """

    def __init__(
        self,
        default_ttl: float = 900.0,
        max_ttl: float = 3600.0,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(default_ttl=default_ttl, max_ttl=max_ttl)
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Decision]] = {}

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> "InMemoryResultCache":
        return cls(
            default_ttl=config.cache_ttl_seconds,
            max_ttl=config.cache_max_ttl_seconds,
            max_entries=config.cache_max_entries,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get(self, key: str) -> Optional[Decision]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, decision = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return decision

    async def put(self, key: str, decision: Decision, ttl: Optional[float] = None) -> None:
        ttl = self.effective_ttl(ttl)
        if ttl <= 0:
            return
        now = self._clock()
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                victim = min(self._entries, key=lambda k: self._entries[k][0])
                del self._entries[victim]
                logger.debug("cache_evicted", key=victim)
            self._entries[key] = (now + ttl, decision)

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisResultCache(ResultCache):
    """
    Redis-backed cache.

    Uses JSON serialization. Connection problems and unreadable payloads
    surface as CacheUnavailableError and the engine degrades to a cache miss.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        default_ttl: float = 900.0,
        max_ttl: float = 3600.0,
        prefix: str = "riskgate:decision:",
        client=None,
    ):
        super().__init__(default_ttl=default_ttl, max_ttl=max_ttl)
        self.redis_url = redis_url
        self.prefix = prefix
        self._client = client

    @classmethod
    def from_settings(cls, config: Settings = default_settings) -> "RedisResultCache":
        return cls(
            redis_url=config.redis_url,
            default_ttl=config.cache_ttl_seconds,
            max_ttl=config.cache_max_ttl_seconds,
        )

    def _redis(self):
        """Lazy-init Redis connection."""
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
            )
        return self._client

    async def get(self, key: str) -> Optional[Decision]:
        try:
            raw = await self._redis().get(self.prefix + key)
        except Exception as e:
            logger.warning("redis_get_failed", error=str(e))
            raise CacheUnavailableError(str(e)) from e
        if not raw:
            return None
        try:
            return Decision.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("redis_payload_invalid", key=key, error=str(e))
            raise CacheUnavailableError(f"unreadable payload for {key}") from e

    async def put(self, key: str, decision: Decision, ttl: Optional[float] = None) -> None:
        ttl = self.effective_ttl(ttl)
        if ttl <= 0:
            return
        try:
            await self._redis().set(
                self.prefix + key,
                decision.model_dump_json(),
                ex=max(1, int(ttl)),
            )
        except Exception as e:
            logger.warning("redis_set_failed", error=str(e))
            raise CacheUnavailableError(str(e)) from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
