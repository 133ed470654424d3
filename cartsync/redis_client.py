"""
Pooled Redis client backing guest cart, wishlist and token storage.
"""
import redis
import time
import random
import logging
from typing import Optional, Any, Callable
from redis.exceptions import (
    ConnectionError,
    TimeoutError,
    RedisError,
    AuthenticationError
)

from cartsync.config import Config
from cartsync.exceptions import StorageConnectionError

logger = logging.getLogger(__name__)


class RedisClient:
    """Redis client with connection pooling and retry logic"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or Config.redis_url()
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = None
        self._connect()

    def _connect(self):
        """Initialize Redis connection pool"""
        try:
            options = dict(
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=Config.REDIS_RETRY_ON_TIMEOUT,
                decode_responses=True,
            )
            if self.url.startswith("rediss://"):
                options["ssl_cert_reqs"] = None  # ElastiCache uses self-signed certs

            self.pool = redis.ConnectionPool.from_url(self.url, **options)
            self.client = redis.Redis(connection_pool=self.pool)

            # Test connection
            self.client.ping()

        except (ConnectionError, AuthenticationError) as e:
            raise StorageConnectionError(f"Failed to connect to Redis: {e}")

    def _retry_with_backoff(
        self,
        operation: str,
        func: Callable,
        max_retries: int = 3,
        initial_backoff: float = 0.1,
        max_backoff: float = 2.0
    ) -> Any:
        """
        Run a Redis command, retrying connection and timeout errors with
        exponential backoff plus jitter and reconnecting between attempts.

        Raises StorageConnectionError once retries are exhausted or on any
        other Redis error.
        """
        backoff = initial_backoff

        for attempt in range(1, max_retries + 1):
            try:
                return func()
            except (ConnectionError, TimeoutError) as e:
                if attempt == max_retries:
                    raise StorageConnectionError(f"Redis {operation} failed after {max_retries} attempts: {e}")

                delay = backoff + random.uniform(0, backoff * 0.1)
                logger.warning(f"Redis {operation} attempt {attempt} failed ({e}); retrying in {delay:.2f}s")
                time.sleep(delay)
                backoff = min(backoff * 2, max_backoff)

                try:
                    self._connect()
                except StorageConnectionError as reconnect_error:
                    logger.warning(f"Redis reconnect after attempt {attempt} failed: {reconnect_error}")

            except RedisError as e:
                # Not retryable
                raise StorageConnectionError(f"Redis {operation} error: {e}")

    def get(self, key: str) -> Optional[str]:
        """Get value from Redis"""
        return self._retry_with_backoff("GET", lambda: self.client.get(key))

    def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        """Set value in Redis with optional TTL"""
        return self._retry_with_backoff("SET", lambda: self.client.set(key, value, ex=ex))

    def delete(self, *keys: str) -> int:
        """Delete one or more keys"""
        return self._retry_with_backoff("DEL", lambda: self.client.delete(*keys))

    def ping(self) -> bool:
        """Test Redis connection"""
        try:
            return self.client.ping()
        except RedisError:
            return False

    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.disconnect()


# Global Redis client instance
_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Get or create Redis client instance (singleton)"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client


def close_redis_client() -> None:
    """Release the shared pool, if one was ever opened"""
    global _redis_client
    if _redis_client is not None:
        _redis_client.close()
        _redis_client = None
