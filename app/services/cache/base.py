from abc import ABC

from loguru import logger
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from app.core.config import settings

# Process wide pool, created on first use
_redis_pool: ConnectionPool | None = None


def get_redis_pool() -> ConnectionPool:
    """
    Connection pool shared by every Redis backed store of the process.

    Timeouts are not retried: the rate limiter bounds each round trip and applies
    its fail policy instead.

    Returns:
        ConnectionPool: The shared pool
    """
    global _redis_pool

    if _redis_pool is None:
        _redis_pool = ConnectionPool.from_url(
            settings.redis_url.human_repr(),
            encoding="utf-8",
            decode_responses=False,
            max_connections=settings.redis_max_pool_connections,
            retry_on_timeout=False,
            socket_connect_timeout=settings.redis_socket_connect_timeout,
            socket_timeout=settings.redis_socket_timeout,
        )
        logger.info(
            f"Redis pool for {settings.redis_host}:{settings.redis_port} created "
            f"(max_connections={settings.redis_max_pool_connections})"
        )
    return _redis_pool


async def close_redis_pool() -> None:
    """Disconnect every connection of the shared pool"""
    global _redis_pool

    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None
        logger.info("Redis connection pool closed")


class BaseRedisClient(ABC):
    """
    Abstract base class for Redis clients with shared connection handling.

    Provides Redis connection initialization, health checks and shutdown for every
    Redis-based service (the bucket store of the rate limiter).
    """

    def __init__(self, redis_client: Redis | None = None):
        self._redis_client = redis_client or self._initialize_redis()

    @property
    def redis_client(self) -> Redis:
        return self._redis_client

    def _initialize_redis(self) -> Redis:
        """Create a Redis client on top of the shared connection pool"""
        client = Redis(connection_pool=get_redis_pool())
        logger.debug(f"Redis client initialized for {self.__class__.__name__} using shared pool")
        return client

    async def health_check(self) -> bool:
        """
        Check Redis connection health by pinging the server.

        Returns:
            bool: True if Redis is healthy and responsive, False otherwise
        """
        try:
            await self.redis_client.ping()
            return True
        except (RedisError, OSError) as e:
            logger.error(f"Redis health check failed for {self.__class__.__name__}: {e}")
            return False

    async def close(self):
        """Close Redis connection gracefully"""
        try:
            await self.redis_client.aclose()
            logger.info(f"Redis connection closed for {self.__class__.__name__}")
        except (RedisError, OSError) as e:
            logger.error(f"Error closing Redis connection for {self.__class__.__name__}: {e}")
