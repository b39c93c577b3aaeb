# relaybot/services/infrastructure/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from relaybot.config import settings
from relaybot.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class FastRedisClient:
    """Pooled Redis client backing every piece of relay state."""

    def __init__(self, url: str | None = None):
        self.url = url
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            redis_url = self.url or settings.get_redis_url()

            logger.info("Attempting Redis connection", url_preview=redis_url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=20,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,  # Auto-decode strings
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Fast Redis client initialized successfully", max_connections=20)

        except Exception as e:
            logger.error("Failed to initialize fast Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Fast Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        """Ensure Redis is initialized, fallback if not"""
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()
            if not self._initialized:
                raise ConnectionError("Redis client not available")

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        """Get value - with fallback handling"""
        try:
            await self._ensure_initialized()
            result = await self.client.get(key)
            return result if result else None
        except Exception as e:
            logger.error("Redis GET failed", key=key[:30], error=str(e))
            return None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        """Set value with TTL - with fallback handling"""
        try:
            await self._ensure_initialized()

            if ttl_s:
                result = await self.client.setex(key, ttl_s, value)
            else:
                result = await self.client.set(key, value)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET failed", key=key[:30], error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """Delete key - with fallback handling"""
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:30], error=str(e))
            return False

    async def list_keys(self, prefix: str, limit: int | None = None) -> list[str]:
        """
        List keys under a prefix (keys only, values are fetched separately).

        Uses SCAN so a large keyspace never blocks the server. The result is
        truncated to ``limit`` keys when one is given.
        """
        try:
            await self._ensure_initialized()
            keys: list[str] = []
            async for key in self.client.scan_iter(match=f"{prefix}*", count=100):
                keys.append(str(key))
                if limit is not None and len(keys) >= limit:
                    break
            return keys
        except Exception as e:
            logger.error("Redis SCAN failed", prefix=prefix[:30], error=str(e))
            return []


# Global instance
fast_redis = FastRedisClient()
