import math
import time
from typing import Callable

from loguru import logger

from app.core.config import FailPolicy, settings
from app.core.constants import LogEvent, RateLimitPrefix
from app.core.exceptions.rate_limiter import (
    RateLimitConfigurationError,
    RateLimitExceeded,
    StoreUnavailable,
)
from app.core.types import RateLimitInfo
from app.services.cache.bucket_store import BucketStore
from app.services.error_counter import ErrorStatusCounter


class RateLimiter:
    """
    Token bucket rate limiter backed by a shared bucket store.

    Every key owns a bucket of `capacity` tokens refilled continuously at
    `refill_rate` tokens per second. A request costing `cost` tokens is admitted
    when the bucket holds at least that many; rejected requests leave the bucket
    untouched. The store performs refill, check and subtract atomically, so the
    limit holds across every instance sharing the store.

    When the store is unreachable the configured fail policy decides: `closed`
    rejects the request, `open` admits it.

    Example:
        ```python
        limiter = RateLimiter(name="api", capacity=20, refill_rate=20 / 60, store=store)
        is_allowed, info = await limiter.try_acquire("ip:192.168.1.1")

        if not is_allowed:
            raise TooManyRequestsException(detail="Too many requests")
        ```
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        refill_rate: float,
        store: BucketStore,
        fail_policy: FailPolicy = settings.rate_limit_fail_policy,
        clock: Callable[[], float] = time.time,
        error_counter: ErrorStatusCounter | None = None,
    ):
        if capacity <= 0:
            raise RateLimitConfigurationError(f"Rate limit capacity must be positive, got {capacity}")
        if refill_rate < 0 or math.isnan(refill_rate):
            raise RateLimitConfigurationError(
                f"Rate limit refill rate must not be negative, got {refill_rate}"
            )

        self.name = name
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.store = store
        self.fail_policy = fail_policy
        self.clock = clock
        self.error_counter = error_counter
        self.key_prefix = RateLimitPrefix.for_limiter(name)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def try_acquire(self, key: str, cost: int = 1) -> tuple[bool, RateLimitInfo]:
        """
        Try to take `cost` tokens from the bucket of `key`.

        Args:
            key: Caller identity, e.g. "user:alice" or "ip:192.168.1.1"
            cost: Tokens the request costs (default: 1)

        Returns:
            tuple[bool, RateLimitInfo]: (is_allowed, rate_limit_info)
                - is_allowed: True if the request is admitted
                - rate_limit_info: Capacity and whole tokens left after the attempt

        Raises:
            RateLimitConfigurationError: If cost is not positive
        """
        if cost <= 0:
            raise RateLimitConfigurationError(f"Rate limit cost must be positive, got {cost}")

        store_key = self._key(key)

        try:
            result = await self.store.acquire(
                store_key, self.capacity, self.refill_rate, cost, self.clock()
            )
        except StoreUnavailable as e:
            admitted = self.fail_policy == FailPolicy.OPEN
            logger.error(
                f"eventType={LogEvent.STORE_UNAVAILABLE}, limiter={self.name}, key={store_key}, "
                f"policy={self.fail_policy}, admitted={admitted}, message={e.message}"
            )
            if self.error_counter is not None:
                self.error_counter.increment(LogEvent.STORE_UNAVAILABLE)

            return admitted, RateLimitInfo(limit=self.capacity, remaining=0, store_unavailable=True)

        return result["allowed"], RateLimitInfo(
            limit=self.capacity,
            remaining=max(0, math.floor(result["tokens"])),
            store_unavailable=False,
        )

    async def enforce(self, key: str, cost: int = 1) -> RateLimitInfo:
        """
        Take `cost` tokens from the bucket of `key` or raise.

        Raises:
            RateLimitExceeded: If the request is not admitted
            RateLimitConfigurationError: If cost is not positive
        """
        is_allowed, info = await self.try_acquire(key, cost)

        if not is_allowed:
            raise RateLimitExceeded(f"Rate limit {self.name} exceeded for {key}")

        return info

    async def reset(self, key: str) -> bool:
        """
        Reset the bucket of a specific key.

        Returns:
            bool: True if a bucket was deleted, False otherwise

        Note:
            This is useful for testing or manual intervention (e.g., unblocking a user).
        """
        deleted = await self.store.delete(self._key(key))
        if deleted:
            logger.info(f"Rate limit {self.name} reset for key {key}")
        return deleted

    async def health_check(self) -> bool:
        return await self.store.health_check()


def build_rate_limiters(
    store: BucketStore, error_counter: ErrorStatusCounter | None = None
) -> dict[str, RateLimiter]:
    """
    Create the named limiters from settings.

    Returns:
        dict[str, RateLimiter]: Limiters keyed by name ("auth" and "api")
    """
    return {
        "auth": RateLimiter(
            name="auth",
            capacity=settings.rate_limit_auth_capacity,
            refill_rate=settings.rate_limit_auth_refill_rate,
            store=store,
            error_counter=error_counter,
        ),
        "api": RateLimiter(
            name="api",
            capacity=settings.rate_limit_api_capacity,
            refill_rate=settings.rate_limit_api_refill_rate,
            store=store,
            error_counter=error_counter,
        ),
    }
