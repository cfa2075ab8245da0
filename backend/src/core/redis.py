"""Redis client with connection pooling and graceful fallback."""
import logging
from collections.abc import AsyncIterator

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client with connection pooling and graceful fallback."""

    def __init__(self, url: str, enabled: bool = True) -> None:
        self._url = url
        self._enabled = enabled
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None

    async def connect(self) -> None:
        """Initialize connection pool and verify connectivity."""
        if not self._enabled:
            logger.info("Redis disabled by configuration")
            return
        try:
            self._pool = ConnectionPool.from_url(self._url, max_connections=10)
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()
            logger.info("Redis connected successfully")
        except RedisError as e:
            logger.warning("Redis connection failed: %s", e)
            self._client = None
            self._pool = None

    async def close(self) -> None:
        """Close connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None
            self._pool = None
            logger.info("Redis connection closed")

    @property
    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._client is not None

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        if not self._client:
            return False
        try:
            return await self._client.ping()
        except RedisError:
            return False

    async def publish(self, channel: str, message: str) -> bool:
        """Publish a message, returns False if Redis unavailable."""
        if not self._client:
            return False
        try:
            await self._client.publish(channel, message)
            return True
        except RedisError as e:
            logger.warning("Redis PUBLISH failed: %s", e)
            return False

    async def listen(self, pattern: str) -> AsyncIterator[tuple[str, str]]:
        """
        Yield (channel, payload) pairs for every message matching a channel pattern.

        Returns immediately if Redis is unavailable. The pub/sub connection is
        released when the consumer stops iterating.
        """
        if not self._client:
            return
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        try:
            await pubsub.psubscribe(pattern)
            async for message in pubsub.listen():
                if message.get("type") != "pmessage":
                    continue
                channel = message["channel"]
                data = message["data"]
                if isinstance(channel, bytes):
                    channel = channel.decode("utf-8")
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                yield channel, data
        except RedisError as e:
            logger.warning("Redis pub/sub listener stopped: %s", e)
        finally:
            await pubsub.aclose()


# Global Redis client state using a container to avoid global statement
class _RedisState:
    """Container for global Redis client state."""

    client: RedisClient | None = None


_state = _RedisState()


def get_redis_client() -> RedisClient | None:
    """Get the global Redis client instance."""
    return _state.client


def set_redis_client(client: RedisClient | None) -> None:
    """Set the global Redis client instance."""
    _state.client = client
