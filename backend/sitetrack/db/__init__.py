"""Database package: Redis client backing the site document store."""

from sitetrack.db.redis import build_site_store, close_redis, get_redis, init_redis

__all__ = [
    "build_site_store",
    "close_redis",
    "get_redis",
    "init_redis",
]
