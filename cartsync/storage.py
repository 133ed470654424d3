"""
Guest storage: the per-session key/value store holding carts and wishlists
for visitors without an authenticated session.
"""
import json
import logging
from typing import Any, Dict, Optional

from cartsync.config import Config
from cartsync.redis_client import get_redis_client

logger = logging.getLogger(__name__)


class GuestStorage:
    """Key/value store scoped to one storage origin (one browser session)"""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError

    def get_json(self, key: str) -> Optional[Any]:
        """
        Read and decode a JSON value.

        A value that does not decode is removed and treated as absent.
        """
        raw = self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding malformed guest storage value for {key}: {e}")
            self.remove_item(key)
            return None

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value))


class MemoryGuestStorage(GuestStorage):
    """Process-local guest storage"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class RedisGuestStorage(GuestStorage):
    """Guest storage kept in Redis, namespaced by storage origin"""

    def __init__(self, origin: str, redis_client=None, ttl: Optional[int] = None):
        self.origin = origin
        self._redis = redis_client
        self.ttl = ttl if ttl is not None else Config.GUEST_STORAGE_TTL_SECONDS

    @property
    def redis(self):
        # Connect lazily so an unused origin never opens a pool
        if self._redis is None:
            self._redis = get_redis_client()
        return self._redis

    def _key(self, key: str) -> str:
        return f"guest:{self.origin}:{key}"

    def get_item(self, key: str) -> Optional[str]:
        return self.redis.get(self._key(key))

    def set_item(self, key: str, value: str) -> None:
        self.redis.set(self._key(key), value, ex=self.ttl)

    def remove_item(self, key: str) -> None:
        self.redis.delete(self._key(key))
