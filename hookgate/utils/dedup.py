"""
Processed-event cache - fast path in front of the durable ledger.

Advisory only: a miss falls through to the database, which is authoritative.
Two backends share the same interface (seen / mark / sweep):
- InMemoryProcessedEventCache: per-process set with insertion timestamps,
  swept once every `sweep_every` insertions
- RedisProcessedEventCache: shared across instances, TTL-based expiry
"""
import logging
import time
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

# Retention window in seconds (24 hours)
DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_SWEEP_EVERY = 100

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from hookgate.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


class ProcessedEventCache(Protocol):
    async def seen(self, key: str) -> bool: ...

    async def mark(self, key: str) -> None: ...

    async def sweep(self) -> int: ...


class InMemoryProcessedEventCache:
    """
    Event ids known to be processed within the trailing window.
    Constructed once per process and injected into the dispatcher.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        sweep_every: int = DEFAULT_SWEEP_EVERY,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.sweep_every = max(1, sweep_every)
        self._clock = clock
        self._marked_at: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._marked_at)

    async def seen(self, key: str) -> bool:
        marked_at = self._marked_at.get(key)
        if marked_at is None:
            return False
        if self._clock() - marked_at > self.ttl_seconds:
            self._marked_at.pop(key, None)
            return False
        return True

    async def mark(self, key: str) -> None:
        self._marked_at[key] = self._clock()
        if len(self._marked_at) % self.sweep_every == 0:
            await self.sweep()

    async def sweep(self) -> int:
        """Drop entries older than the retention window. Returns count removed."""
        cutoff = self._clock() - self.ttl_seconds
        expired = [key for key, marked_at in self._marked_at.items() if marked_at < cutoff]
        for key in expired:
            del self._marked_at[key]
        if expired:
            logger.debug("Swept %d expired processed-event ids", len(expired))
        return len(expired)


class RedisProcessedEventCache:
    """Redis-backed cache. Redis failures degrade to a miss, never to an error."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        redis_getter: Optional[Callable] = None,
        prefix: str = "hookgate:processed",
    ):
        self.ttl_seconds = ttl_seconds
        self._redis_getter = redis_getter or get_redis
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def seen(self, key: str) -> bool:
        try:
            redis = await self._redis_getter()
            return bool(await redis.exists(self._key(key)))
        except Exception as e:
            logger.warning("Redis processed-event lookup failed: %s. Treating as miss.", str(e))
            return False

    async def mark(self, key: str) -> None:
        try:
            redis = await self._redis_getter()
            await redis.set(self._key(key), "1", ex=self.ttl_seconds)
        except Exception as e:
            logger.warning("Redis processed-event mark failed: %s", str(e))

    async def sweep(self) -> int:
        # Expiry is handled by the key TTL
        return 0


def build_processed_event_cache(settings=None) -> ProcessedEventCache:
    """Build the cache backend selected by IDEMPOTENCY_CACHE_BACKEND."""
    if settings is None:
        from hookgate.config import get_settings
        settings = get_settings()
    if settings.idempotency_cache_backend == "redis":
        return RedisProcessedEventCache(ttl_seconds=settings.idempotency_cache_ttl_seconds)
    if settings.idempotency_cache_backend != "memory":
        logger.warning(
            "Unknown idempotency cache backend '%s' - using in-memory cache",
            settings.idempotency_cache_backend,
        )
    return InMemoryProcessedEventCache(
        ttl_seconds=settings.idempotency_cache_ttl_seconds,
        sweep_every=settings.idempotency_cache_sweep_every,
    )
