"""Redis connection and utilities"""
import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
import redis.asyncio as aioredis

from streamdash.core.config import settings

logger = logging.getLogger(__name__)


def cache_url(url: str, db: int) -> str:
    """Point a Redis URL at database db.

    from_url() lets the URL's own database (path or ?db=) override its db
    argument, so the number has to be written into the URL itself.
    """
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "db"]
    if parts.scheme == "unix":
        # the path is the socket
        query.append(("db", str(db)))
        return urlunsplit(parts._replace(query=urlencode(query)))
    return urlunsplit(parts._replace(path=f"/{db}", query=urlencode(query)))


class RedisClient:
    """Redis client wrapper. Every operation is a no-op until connect() succeeds."""

    def __init__(self):
        self.redis: Optional[aioredis.Redis] = None

    @property
    def connected(self) -> bool:
        return self.redis is not None

    async def connect(self):
        """Connect to the cache database, if REDIS_URL is configured"""
        if not settings.REDIS_URL:
            logger.info("REDIS_URL not set, filter option caching disabled")
            return
        self.redis = aioredis.from_url(
            cache_url(settings.REDIS_URL, settings.REDIS_CACHE_DB),
            encoding="utf-8",
            decode_responses=True
        )

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    async def get(self, key: str) -> Optional[str]:
        """Get value from Redis"""
        if not self.redis:
            return None
        return await self.redis.get(key)

    async def set(self, key: str, value: str, expire: Optional[int] = None):
        """Set value in Redis"""
        if not self.redis:
            return
        await self.redis.set(key, value, ex=expire)

    async def ping(self) -> bool:
        if not self.redis:
            return False
        return bool(await self.redis.ping())


redis_client = RedisClient()
