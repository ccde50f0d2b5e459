import logging

from geotrack.models.query import QueryResult, QueryWindow
from geotrack.services.geofence_service import get_geofence_annotator
from geotrack.services.query_service import get_query_engine
from geotrack.storage.query_cache import get_query_cache

logger = logging.getLogger(__name__)


class MessagesService:
    """Read-through cache in front of the query engine and annotator."""

    def __init__(self):
        self.cache = get_query_cache()
        self.engine = get_query_engine()
        self.annotator = get_geofence_annotator()

    async def get_messages(self, window: QueryWindow) -> QueryResult:
        key = window.cache_key()

        cached = await self.cache.get(key)
        if cached is not None:
            logger.info(f"Returning cached data for {key}")
            return cached

        result = await self.engine.query(window)
        result = await self.annotator.annotate(result)

        await self.cache.set(key, result)
        return result


_service = MessagesService()


def get_messages_service() -> MessagesService:
    return _service
