"""
Redis connection helper
Redis is optional; callers fall back to in-process state when no client is available
"""
import logging
import urllib.parse
from typing import Optional

import redis

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


def get_redis_client(url: Optional[str] = None) -> Optional[redis.Redis]:
    """
    Get a Redis client if configured and reachable

    Returns:
        Redis client instance or None if Redis is not configured or not reachable
    """
    global _client

    from ..config import config

    url = url or config.REDIS_URL
    if not url:
        return None

    if _client is not None and url == config.REDIS_URL:
        return _client

    try:
        parsed = urllib.parse.urlparse(url)
        client = redis.Redis(
            host=parsed.hostname or 'localhost',
            port=parsed.port or 6379,
            password=parsed.password,
            db=int(parsed.path.lstrip('/') or 0),
            ssl=parsed.scheme == 'rediss',
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30
        )
        client.ping()
        logger.info(f"Redis connection established: {parsed.hostname}:{parsed.port or 6379}")
    except (redis.RedisError, ValueError) as e:
        logger.warning(f"Redis connection failed: {e}. Using in-memory fallback.")
        return None

    if url == config.REDIS_URL:
        _client = client
    return client


def reset_redis_client():
    """Forget the cached client (used by tests and after connection loss)"""
    global _client
    _client = None
