"""
Idempotency guard backed by Redis.

A key is reserved with a single SET NX EX, so reservation and expiry are
atomic and the first caller wins.
"""
import redis.asyncio as redis

from noterelay.config import settings


class IdempotencyGuard:
    """Shared key -> processed marker store with expiry."""

    def __init__(self, redis_url: str = None, ttl_seconds: int = None, client=None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.ttl_seconds = ttl_seconds or settings.IDEMPOTENCY_TTL_SECONDS
        self._redis = client

    async def get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    @staticmethod
    def redis_key(key: str) -> str:
        return f"idem:{key}"

    async def reserve(self, key: str) -> bool:
        """
        Reserve a key for processing.

        Returns:
            True if this caller reserved the key, False if it was already seen
        """
        r = await self.get_redis()
        acquired = await r.set(self.redis_key(key), 1, nx=True, ex=self.ttl_seconds)
        return bool(acquired)
