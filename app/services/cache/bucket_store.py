import asyncio
import threading
from abc import ABC, abstractmethod

from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.exceptions.rate_limiter import StoreUnavailable
from app.core.types import BucketResult
from app.services.cache.base import BaseRedisClient

# Refill, check and subtract in a single server side step.
# KEYS[1] bucket key
# ARGV capacity, refill rate per second, now (seconds), cost, idle ttl (seconds)
# The bucket is only written when the request is admitted.
TOKEN_BUCKET_SCRIPT = """
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])
local idle_ttl = tonumber(ARGV[5])

local state = redis.call('HMGET', KEYS[1], 'tokens', 'ts')
local tokens = tonumber(state[1])
local ts = tonumber(state[2])

if tokens == nil or ts == nil then
    tokens = capacity
    ts = now
end

local elapsed = math.max(0, now - ts)
tokens = math.min(capacity, tokens + elapsed * refill_rate)

local allowed = 0
if tokens >= cost then
    tokens = tokens - cost
    allowed = 1
    redis.call('HSET', KEYS[1], 'tokens', tostring(tokens), 'ts', tostring(math.max(now, ts)))
    redis.call('EXPIRE', KEYS[1], idle_ttl)
end

return {allowed, tostring(tokens)}
"""


def refill_bucket(
    tokens: float | None,
    last_refill: float | None,
    now: float,
    capacity: int,
    refill_rate: float,
    cost: int,
) -> tuple[bool, float, float]:
    """
    Apply one refill-check-subtract step to a token bucket.

    A missing bucket starts full. Time going backwards never removes tokens and
    never moves `last_refill` back.

    Args:
        tokens: Stored token count, None for a new bucket
        last_refill: Stored refill timestamp in seconds, None for a new bucket
        now: Current timestamp in seconds
        capacity: Maximum number of tokens
        refill_rate: Tokens added per second
        cost: Tokens requested

    Returns:
        tuple[bool, float, float]: (allowed, tokens, last_refill) after the step.
            When not allowed, tokens are the refilled but unspent count.
    """
    if tokens is None or last_refill is None:
        tokens, last_refill = float(capacity), now

    elapsed = max(0.0, now - last_refill)
    tokens = min(float(capacity), tokens + elapsed * refill_rate)
    last_refill = max(now, last_refill)

    if tokens >= cost:
        return True, tokens - cost, last_refill

    return False, tokens, last_refill


class BucketStore(ABC):
    """Shared storage of token buckets, mutated atomically per key"""

    @abstractmethod
    async def acquire(
        self, key: str, capacity: int, refill_rate: float, cost: int, now: float
    ) -> BucketResult:
        """
        Refill the bucket at `key`, then take `cost` tokens if enough are left.

        Raises:
            StoreUnavailable: If the store cannot answer in time
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Drop the bucket at `key`. Returns True if it existed."""

    @abstractmethod
    async def health_check(self) -> bool: ...

    async def close(self) -> None:
        return None


class InMemoryBucketStore(BucketStore):
    """
    Process local bucket store.

    Used in the local environment and in tests. Buckets are only shared by the
    limiters of one process. A bucket idle for `idle_ttl` seconds counts as new;
    idle buckets are swept out at most once every `sweep_interval` seconds.
    """

    def __init__(
        self, idle_ttl: int = settings.rate_limit_idle_ttl, sweep_interval: float | None = None
    ):
        self.idle_ttl = idle_ttl
        self.sweep_interval = sweep_interval if sweep_interval is not None else idle_ttl
        self._buckets: dict[str, tuple[float, float]] = {}
        self._last_sweep: float | None = None
        self._lock = threading.Lock()

    async def acquire(
        self, key: str, capacity: int, refill_rate: float, cost: int, now: float
    ) -> BucketResult:
        with self._lock:
            self._drop_idle(now)
            tokens, last_refill = self._buckets.get(key, (None, None))
            if last_refill is not None and now - last_refill >= self.idle_ttl:
                tokens, last_refill = None, None
            allowed, tokens, last_refill = refill_bucket(
                tokens, last_refill, now, capacity, refill_rate, cost
            )
            if allowed:
                self._buckets[key] = (tokens, last_refill)

        return BucketResult(allowed=allowed, tokens=tokens)

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._buckets.pop(key, None) is not None

    async def health_check(self) -> bool:
        return True

    def _drop_idle(self, now: float) -> None:
        if self._last_sweep is None:
            self._last_sweep = now
        if now - self._last_sweep < self.sweep_interval:
            return

        self._last_sweep = now
        idle = [key for key, (_, last) in self._buckets.items() if now - last >= self.idle_ttl]
        for key in idle:
            del self._buckets[key]


class RedisBucketStore(BaseRedisClient, BucketStore):
    """
    Redis bucket store shared by every instance of the service.

    Each bucket is a hash with the fields `tokens` and `ts`, expiring after
    `idle_ttl` seconds without admitted requests. Every round trip is bounded by
    `timeout` seconds.
    """

    def __init__(
        self,
        redis_client: Redis | None = None,
        timeout: float = settings.rate_limit_store_timeout,
        idle_ttl: int = settings.rate_limit_idle_ttl,
    ):
        super().__init__(redis_client)
        self.timeout = timeout
        self.idle_ttl = idle_ttl
        self._script = self.redis_client.register_script(TOKEN_BUCKET_SCRIPT)

    async def acquire(
        self, key: str, capacity: int, refill_rate: float, cost: int, now: float
    ) -> BucketResult:
        try:
            allowed, tokens = await asyncio.wait_for(
                self._script(keys=[key], args=[capacity, refill_rate, now, cost, self.idle_ttl]),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            raise StoreUnavailable(f"Bucket store timed out after {self.timeout}s for {key}", e)
        except RedisError as e:
            raise StoreUnavailable(f"Bucket store failed for {key}", e)

        return BucketResult(allowed=bool(int(allowed)), tokens=float(tokens))

    async def delete(self, key: str) -> bool:
        try:
            deleted = await asyncio.wait_for(self.redis_client.delete(key), timeout=self.timeout)
        except TimeoutError as e:
            raise StoreUnavailable(f"Bucket store timed out after {self.timeout}s for {key}", e)
        except RedisError as e:
            raise StoreUnavailable(f"Bucket store failed for {key}", e)

        if deleted:
            logger.info(f"Bucket {key} deleted")
        return deleted > 0
