from .base import BaseRedisClient
from .bucket_store import BucketStore, InMemoryBucketStore, RedisBucketStore
from .rate_limiter import RateLimiter, build_rate_limiters

__all__ = [
    "BaseRedisClient",
    "BucketStore",
    "InMemoryBucketStore",
    "RedisBucketStore",
    "RateLimiter",
    "build_rate_limiters",
]
