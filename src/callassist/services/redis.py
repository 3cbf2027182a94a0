import logging

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..settings import get_settings

logger = logging.getLogger(__name__)

REDIS_ERRORS = (RedisConnectionError, RedisTimeoutError)


class RedisStore:
    """Namespaced async key/value access to Redis.

    Keys are stored as ``<namespace><key>``. Read and write failures are
    logged and reported as a miss / ``False`` so that a flaky Redis degrades
    a call instead of hanging it up.
    """

    def __init__(self, url: str, namespace: str = "") -> None:
        self._url = url
        self._namespace = namespace
        self._client: Redis | None = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def connect(self) -> None:
        """Open the connection and ping it. Idempotent; raises if Redis is unreachable."""
        if self._client is not None:
            return
        client = Redis.from_url(self._url, decode_responses=True)
        try:
            await client.ping()
        except REDIS_ERRORS as e:
            logger.warning("Redis ping failed: %s", e)
            await client.aclose()
            raise
        self._client = client
        # strip credentials before logging
        logger.info("Redis connection established: %s", self._url.split("@")[-1])

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.debug("Redis connection closed")

    async def get(self, key: str) -> str | None:
        if self._client is None:
            return None
        try:
            value = await self._client.get(self._key(key))
        except REDIS_ERRORS as e:
            logger.warning("Redis get %s failed: %s", key, e)
            return None
        return None if value is None else str(value)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> bool:
        """Store value; with a positive ttl_seconds the key expires."""
        if self._client is None:
            return False
        try:
            if ttl_seconds:
                await self._client.setex(self._key(key), ttl_seconds, value)
            else:
                await self._client.set(self._key(key), value)
        except REDIS_ERRORS as e:
            logger.warning("Redis set %s failed: %s", key, e)
            return False
        return True

    async def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.delete(self._key(key))
        except REDIS_ERRORS as e:
            logger.warning("Redis delete %s failed: %s", key, e)
            return False
        return True


def get_redis_store(namespace: str = "") -> RedisStore | None:
    """Return a RedisStore if redis_url is configured, else None."""
    url = (get_settings().redis_url or "").strip()
    if not url:
        return None
    return RedisStore(url, namespace=namespace)
