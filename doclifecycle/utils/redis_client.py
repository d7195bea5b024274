from functools import lru_cache

from redis.asyncio import Redis

from doclifecycle.core.settings import settings


@lru_cache(maxsize=1)
def get_redis_client() -> Redis:
    """Shared client for health checks and the reconciliation queue."""
    return Redis.from_url(settings.redis_url, decode_responses=True)


async def close_redis_client() -> None:
    if get_redis_client.cache_info().currsize == 0:
        return
    client = get_redis_client()
    get_redis_client.cache_clear()
    await client.aclose()
