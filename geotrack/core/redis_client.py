import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from geotrack.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)

CLIENT_NAME = "geotrack"

_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None


def _build_pool(settings: Settings) -> redis.ConnectionPool:
    # Raw bytes out; stored rows are parsed by pydantic, not decoded here.
    return redis.ConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        health_check_interval=settings.redis_health_check_interval,
        retry_on_timeout=True,
        client_name=CLIENT_NAME,
    )


async def get_redis_client() -> redis.Redis:
    """Shared client for the stores; created lazily on first use."""
    global _pool, _redis_client

    if _redis_client is None:
        _pool = _build_pool(get_settings())
        _redis_client = redis.Redis(connection_pool=_pool)

    return _redis_client


def set_redis_client(client: Optional[redis.Redis]) -> None:
    global _pool, _redis_client
    _pool = None
    _redis_client = client


async def ping_redis() -> bool:
    """True when the store answers; failures are logged, not raised."""
    client = await get_redis_client()
    try:
        return bool(await client.ping())
    except RedisError as e:
        logger.warning(f"Redis unreachable: {e}")
        return False


async def close_redis_client():
    global _pool, _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    if _pool is not None:
        await _pool.disconnect()
        _pool = None
