"""
Async Redis pools for the memory store, one per server URL.

Two stores pointed at different REDIS_URLs must never share connections, so
pools are keyed by URL and created lazily on first use. Transient errors
(dropped connections, timeouts, a server still loading its dataset) are
retried with exponential backoff before the store backend sees them.
"""

import logging
from typing import Dict, Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import (
    BusyLoadingError,
    ConnectionError,
    TimeoutError,
)

from savannah.core.config import settings

log = logging.getLogger(__name__)

_pools: Dict[str, redis.ConnectionPool] = {}

POOL_MAX_CONNECTIONS = 20
HEALTH_CHECK_INTERVAL = 30
RETRY_ATTEMPTS = 3
TRANSIENT_ERRORS = (ConnectionError, TimeoutError, BusyLoadingError)


def get_pool(url: Optional[str] = None) -> redis.ConnectionPool:
    url = url or settings.REDIS_URL
    pool = _pools.get(url)
    if pool is None:
        pool = _pools[url] = redis.ConnectionPool.from_url(
            url,
            max_connections=POOL_MAX_CONNECTIONS,
            socket_timeout=settings.STORE_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.STORE_TIMEOUT_SECONDS,
            health_check_interval=HEALTH_CHECK_INTERVAL,
            decode_responses=True,
        )
        log.info("[STORE] Redis pool created for %s (max_connections=%d)", pool.connection_kwargs.get("host"), POOL_MAX_CONNECTIONS)
    return pool


async def get_redis(url: Optional[str] = None) -> redis.Redis:
    """Client over the pool for `url` (default REDIS_URL). Cheap; connections are pooled."""
    return redis.Redis(
        connection_pool=get_pool(url),
        retry=Retry(
            retries=RETRY_ATTEMPTS,
            backoff=ExponentialBackoff(cap=0.5, base=0.1),
            supported_errors=TRANSIENT_ERRORS,
        ),
        retry_on_error=list(TRANSIENT_ERRORS),
    )


async def close_redis():
    while _pools:
        _, pool = _pools.popitem()
        await pool.disconnect()
    log.info("[STORE] Redis pools closed")
