"""Redis client backing the site document store and its live feed.

One client per process, opened in the app lifespan. ``build_site_store``
binds a SiteStore to a client with the configured key prefix and write
retry budget, so the HTTP layer and workers address the same keys.
"""

import redis.asyncio as redis
import structlog

from sitetrack.core.config import Settings, get_settings
from sitetrack.store.site_store import SiteStore

logger = structlog.get_logger(__name__)

_client: redis.Redis | None = None


def connection_options(settings: Settings) -> dict:
    """Client options for the document store.

    Responses are decoded (documents are JSON text). Pooled connections are
    pinged when idle longer than the health-check interval, since live-feed
    subscribers hold connections open for a long time.
    """
    return {
        "encoding": "utf-8",
        "decode_responses": True,
        "health_check_interval": settings.redis_health_check_interval,
        "socket_timeout": settings.redis_socket_timeout,
        "socket_connect_timeout": settings.redis_socket_timeout,
        "client_name": f"{settings.key_prefix}-api",
    }


async def init_redis(settings: Settings | None = None) -> redis.Redis:
    """Open the shared client and check the store is reachable. Idempotent."""
    global _client

    if _client is not None:
        return _client

    settings = settings or get_settings()
    client = redis.from_url(settings.redis_url, **connection_options(settings))
    await client.ping()

    _client = client
    logger.info(
        "redis_connected",
        key_prefix=settings.key_prefix,
        health_check_interval=settings.redis_health_check_interval,
    )
    return _client


async def close_redis() -> None:
    global _client

    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("redis_closed")


def get_redis() -> redis.Redis:
    """Return the shared client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _client


def build_site_store(client: redis.Redis, settings: Settings | None = None) -> SiteStore:
    settings = settings or get_settings()
    return SiteStore(
        client,
        key_prefix=settings.key_prefix,
        max_attempts=settings.write_retry_attempts,
    )
