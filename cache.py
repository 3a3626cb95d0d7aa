# redirect-service/cache.py
import logging

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError

from models import ShortLink

logger = logging.getLogger(__name__)

# Stored for slugs the store does not know, so repeated misses skip the store.
NULL_MARKER = "NULL"


async def connect_to_redis(redis_url: str) -> redis.Redis:
    """
    Returns a new Redis client instance.
    Called once during application startup.
    """
    client = redis.from_url(redis_url, decode_responses=True)
    try:
        await client.ping()
        logger.info("Connected to Redis: %s", redis_url)
    except RedisError as e:
        logger.error("Redis connection failed: %s", e)
        await client.aclose()
        raise
    return client


async def close_redis_connection(client: redis.Redis):
    await client.aclose()
    logger.info("Disconnected from Redis.")


class LinkCache:
    """Slug lookups cached in Redis under ``link_data:<slug>``.

    ``get`` returns the cached ShortLink, ``NULL_MARKER`` for a slug known to
    be missing, or None on a miss. Redis failures are logged and reported as
    misses so the caller falls back to the store.
    """

    def __init__(self, client: redis.Redis, ttl: int = 3600 * 24 * 7, miss_ttl: int = 60):
        self.client = client
        self.ttl = ttl
        self.miss_ttl = miss_ttl

    @staticmethod
    def key(slug: str) -> str:
        return f"link_data:{slug}"

    async def get(self, slug: str):
        try:
            cached = await self.client.get(self.key(slug))
        except RedisError as e:
            logger.warning("Cache read failed for slug %r: %s", slug, e)
            return None
        if cached is None:
            logger.debug("Cache miss for slug: %s", slug)
            return None
        if cached == NULL_MARKER:
            logger.debug("Cache hit for slug: %s (NULL marker)", slug)
            return NULL_MARKER
        try:
            link = ShortLink.model_validate_json(cached)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry for slug %r", slug)
            return None
        logger.debug("Cache hit for slug: %s", slug)
        return link

    async def set_link(self, link: ShortLink):
        await self._set(link.slug, link.model_dump_json(by_alias=True), self.ttl)

    async def set_missing(self, slug: str):
        await self._set(slug, NULL_MARKER, self.miss_ttl)

    async def _set(self, slug: str, value: str, ttl: int):
        try:
            await self.client.set(self.key(slug), value, ex=ttl)
        except RedisError as e:
            logger.warning("Cache write failed for slug %r: %s", slug, e)

