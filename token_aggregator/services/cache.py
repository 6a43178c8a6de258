"""
Redis cache service for Token Aggregator.
Stores serialized merged token lists under TTL keys. Every store failure
degrades to a cache miss or a no-op; nothing here fails a request.
"""

import asyncio
import json
from typing import List, Optional

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from ..api.schemas import MergedTokenRecord
from ..core.config import settings
from ..core.logging_config import create_logger

logger = create_logger(__name__)


class CacheUnavailableError(Exception):
    """Raised internally when the cache store cannot be reached."""
    pass


class CacheService:
    """Redis-backed TTL key-value cache for token lists."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[redis.Redis] = client
        self._connection_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize Redis connection pool. An unreachable server is logged, not raised."""
        async with self._connection_lock:
            if self._redis is None:
                self._pool = ConnectionPool.from_url(
                    settings.get_redis_url(),
                    max_connections=20,
                    retry_on_timeout=True,
                    socket_keepalive=True,
                    health_check_interval=30
                )
                self._redis = redis.Redis(connection_pool=self._pool)

            try:
                await self._redis.ping()
                logger.info("Successfully connected to Redis", extra={
                    "redis_host": settings.redis_host,
                    "redis_port": settings.redis_port,
                    "redis_db": settings.redis_db
                })
            except Exception as e:
                logger.error("Redis unreachable, serving without cache", extra={
                    "error": str(e),
                    "redis_host": settings.redis_host,
                    "redis_port": settings.redis_port
                })

    async def disconnect(self) -> None:
        """Close Redis connection."""
        async with self._connection_lock:
            if self._redis:
                await self._redis.aclose()
                self._redis = None
            if self._pool:
                await self._pool.disconnect()
                self._pool = None
            logger.info("Disconnected from Redis")

    def _client(self) -> redis.Redis:
        if self._redis is None:
            raise CacheUnavailableError("Cache is not connected")
        return self._redis

    async def health_check(self) -> bool:
        """Check Redis connection health."""
        try:
            await self._client().ping()
            return True
        except Exception as e:
            logger.warning("Redis health check failed", extra={"error": str(e)})
            return False

    async def get_tokens(self, key: str) -> Optional[List[MergedTokenRecord]]:
        """Get a token list from cache. Returns None on miss or when the store is unavailable."""
        try:
            data = await self._client().get(key)
        except Exception as e:
            logger.error("Failed to get tokens from cache", extra={
                "key": key,
                "error": str(e)
            })
            return None

        if not data:
            return None

        try:
            tokens = [MergedTokenRecord(**item) for item in json.loads(data)]
        except Exception as e:
            logger.warning("Failed to deserialize tokens from cache", extra={
                "key": key,
                "error": str(e)
            })
            return None

        logger.debug("Retrieved tokens from cache", extra={
            "key": key,
            "count": len(tokens)
        })
        return tokens

    async def set_tokens(self, key: str, tokens: List[MergedTokenRecord], ttl: Optional[int] = None) -> None:
        """Store a token list in cache with TTL."""
        ttl = ttl or settings.cache_ttl
        try:
            payload = json.dumps([token.dict() for token in tokens])
            await self._client().setex(key, ttl, payload)

            logger.debug("Stored tokens in cache", extra={
                "key": key,
                "count": len(tokens),
                "ttl": ttl
            })

        except Exception as e:
            logger.error("Failed to store tokens in cache", extra={
                "key": key,
                "count": len(tokens),
                "error": str(e)
            })

    async def invalidate(self, pattern: str) -> int:
        """Delete every key matching a glob pattern and return how many were removed."""
        try:
            client = self._client()
            keys = [key async for key in client.scan_iter(match=pattern)]
            if not keys:
                return 0
            deleted = await client.delete(*keys)

            logger.info("Invalidated cache keys", extra={
                "pattern": pattern,
                "deleted": deleted
            })
            return deleted

        except Exception as e:
            logger.error("Failed to invalidate cache", extra={
                "pattern": pattern,
                "error": str(e)
            })
            return 0
