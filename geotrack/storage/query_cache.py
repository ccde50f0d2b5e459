import logging
from typing import Optional

from pydantic import ValidationError
from redis.exceptions import RedisError

from geotrack.config.settings import get_settings
from geotrack.core.redis_client import get_redis_client
from geotrack.models.query import QueryResult

logger = logging.getLogger(__name__)


class QueryCache:
    def __init__(self):
        self.redis = None
        self.settings = get_settings()

    async def initialize(self):
        if not self.redis:
            self.redis = await get_redis_client()

    async def get(self, key: str) -> Optional[QueryResult]:
        await self.initialize()
        try:
            data = await self.redis.get(f"cache:{key}")
        except RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

        if not data:
            return None
        try:
            return QueryResult.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            return None

    async def set(self, key: str, result: QueryResult) -> None:
        await self.initialize()
        try:
            await self.redis.set(
                f"cache:{key}",
                result.model_dump_json(by_alias=True),
                ex=self.settings.query_cache_ttl_seconds,
            )
        except RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")


_cache = QueryCache()


def get_query_cache() -> QueryCache:
    return _cache
