"""arq connection helpers shared by the job manager and the worker."""

from __future__ import annotations

from arq.connections import ArqRedis, RedisSettings, create_pool

from codingjobs.config import get_config


def get_redis_settings() -> RedisSettings:
    """Redis settings parsed from ``REDIS_URL``."""
    return RedisSettings.from_dsn(get_config().queue.redis_url)


async def get_queue() -> ArqRedis:
    """Open a connection pool to the job queue."""
    return await create_pool(get_redis_settings())
