"""Redis cache service and the cache-aside helper built on it."""

import functools
import json
import logging
from typing import Any, Callable, Iterable, Optional, TypeVar

import redis

from gatekeeper.core.config import settings
from gatekeeper.core.exceptions import CacheUnavailableError

logger = logging.getLogger("gatekeeper")

T = TypeVar("T")

CACHE_TYPE_KEY = "__cacheType"
CACHE_SET_MARKER = "set"


class CacheService:
    """Redis-backed cache with an explicit connect/disconnect lifecycle.

    Reads never raise: a disconnected client, a timeout or any other Redis
    failure is reported as a miss so callers fall through to the role store.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        socket_timeout: Optional[float] = None,
    ):
        self.url = url or settings.REDIS_URL
        self.socket_timeout = (
            socket_timeout if socket_timeout is not None else settings.REDIS_SOCKET_TIMEOUT
        )
        self._client: Optional[redis.Redis] = client

    # ==================== LIFECYCLE ====================

    def connect(self) -> bool:
        """Create the client if needed and check that Redis answers."""
        if self._client is None:
            logger.info("Creating Redis client for %s", _mask_url(self.url))
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
        return self.health_check()

    def disconnect(self) -> None:
        if self._client is None:
            logger.debug("Redis client already disconnected")
            return
        try:
            self._client.close()
            logger.info("Redis client disconnected")
        except redis.RedisError as exc:
            logger.error("Error during Redis disconnection: %s", exc)
        finally:
            self._client = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise CacheUnavailableError("Redis client not initialized. Call connect() first.")
        return self._client

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except (redis.RedisError, CacheUnavailableError):
            return False

    # ==================== KEY/VALUE ====================

    def get(self, key: str) -> Optional[str]:
        """Get a cached value by key."""
        try:
            return self.client.get(key)
        except (redis.RedisError, CacheUnavailableError) as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

    def set(self, key: str, value: str, ttl_seconds: int = 600) -> None:
        """Set a cached value with TTL."""
        try:
            if ttl_seconds > 0:
                self.client.setex(key, ttl_seconds, value)
            else:
                self.client.set(key, value)
        except (redis.RedisError, CacheUnavailableError) as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    def get_json(self, key: str) -> Optional[Any]:
        """Get and parse a JSON cached value."""
        raw = self.get(key)
        if raw:
            try:
                return json.loads(raw)
            except ValueError:
                logger.warning("Discarding non-JSON cache entry %s", key)
        return None

    def set_json(self, key: str, value: Any, ttl_seconds: int = 600) -> None:
        """Serialize and cache a JSON value."""
        self.set(key, json.dumps(value, default=str), ttl_seconds)

    def delete(self, key: str) -> bool:
        """Delete a cached key. Returns False when the cache could not be reached."""
        try:
            self.client.delete(key)
            return True
        except (redis.RedisError, CacheUnavailableError) as exc:
            logger.warning("Cache delete failed for %s: %s", key, exc)
            return False

    # ==================== SETS ====================

    def replace_set(self, key: str, members: Iterable[str], ttl_seconds: int = 0) -> int:
        """Replace the set at ``key`` with ``members``; an empty set deletes the key.

        Unlike the other writes this raises ``CacheUnavailableError`` so a
        caller that depends on the refresh can observe the failure.
        """
        members = sorted({str(m) for m in members})
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(key)
            if members:
                pipe.sadd(key, *members)
                if ttl_seconds > 0:
                    pipe.expire(key, ttl_seconds)
            pipe.execute()
        except redis.RedisError as exc:
            raise CacheUnavailableError(f"Could not write cache key {key}") from exc
        return len(members)

    def is_member(self, key: str, member: str) -> Optional[bool]:
        """Set membership, or None when the key is absent or the cache is down."""
        try:
            pipe = self.client.pipeline(transaction=False)
            pipe.exists(key)
            pipe.sismember(key, str(member))
            exists, is_member = pipe.execute()
        except (redis.RedisError, CacheUnavailableError) as exc:
            logger.warning("Cache membership check failed for %s: %s", key, exc)
            return None
        if not exists:
            return None
        return bool(is_member)


# ==================== CACHE-ASIDE ====================

def serialize_cache_value(value: Any) -> Any:
    """Tag sets so they survive the JSON round trip."""
    if isinstance(value, (set, frozenset)):
        return {CACHE_TYPE_KEY: CACHE_SET_MARKER, "values": sorted(value, key=str)}
    return value


def deserialize_cache_value(value: Any) -> Any:
    if isinstance(value, dict) and value.get(CACHE_TYPE_KEY) == CACHE_SET_MARKER:
        values = value.get("values")
        return set(values) if isinstance(values, list) else set()
    return value


def cache_aside(
    cache: CacheService,
    key_builder: Callable[..., str],
    ttl_seconds: int = 3600,
    name: Optional[str] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Wrap ``fn`` with read-through caching.

    Usage::

        lookup = cache_aside(cache, lambda user_id: f"roles:{user_id}", 3600)(store.get_roles_for_user)

    On a hit the cached value is returned; on a miss ``fn`` is called and a
    non-None result is stored for ``ttl_seconds``.
    """
    def wrap(fn: Callable[..., T]) -> Callable[..., T]:
        label = name or getattr(fn, "__name__", "cached")

        @functools.wraps(fn)
        def wrapper(*args):
            key = key_builder(*args)
            cached = cache.get_json(key)
            if cached is not None:
                logger.debug("[Cache HIT] %s -> %s", label, key)
                return deserialize_cache_value(cached)

            logger.debug("[Cache MISS] %s -> %s", label, key)
            result = fn(*args)
            if result is not None:
                cache.set_json(key, serialize_cache_value(result), ttl_seconds)
            return result

        return wrapper

    return wrap


def _mask_url(url: str) -> str:
    if "@" not in url or "://" not in url:
        return url
    scheme, rest = url.split("://", 1)
    credentials, host = rest.rsplit("@", 1)
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"
