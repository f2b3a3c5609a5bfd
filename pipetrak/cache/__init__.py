"""
Redis layer: progress cache, undo history cache and realtime channel.
"""

from .redis_client import get_redis, close_redis, cache, CacheClient

__all__ = [
    "get_redis",
    "close_redis",
    "cache",
    "CacheClient",
]
