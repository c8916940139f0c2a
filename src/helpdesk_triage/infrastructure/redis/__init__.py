"""
Redis Infrastructure
====================

Connection management for the Redis instance that backs the triage queue
(arq) and the cross-process per-ticket run lock.
"""

from typing import Optional

from arq.connections import ArqRedis, RedisSettings, create_pool

from helpdesk_triage.config import settings
from helpdesk_triage.core import ConfigError


def get_redis_settings(redis_url: Optional[str] = None) -> RedisSettings:
    """
    Build arq RedisSettings from a DSN.

    Raises:
        ConfigError: If no Redis URL is configured
    """
    url = redis_url or settings.redis_url
    if not url:
        raise ConfigError("Redis URL not configured")
    return RedisSettings.from_dsn(url)


async def create_redis_pool(redis_url: Optional[str] = None) -> ArqRedis:
    """
    Open an arq Redis pool.

    The returned ``ArqRedis`` is a ``redis.asyncio.Redis`` and can be shared
    by the queue and the run lock.
    """
    return await create_pool(
        get_redis_settings(redis_url),
        default_queue_name=settings.triage_queue_name,
    )
