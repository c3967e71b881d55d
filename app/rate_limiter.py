"""
Hybrid in-memory + Redis rate limiting utilities
Redis is optional; without it limits are enforced per process
"""

import logging
import time
from threading import Lock
from typing import Optional

import redis
from fastapi import HTTPException, Request

from .config import REDIS_URL

logger = logging.getLogger(__name__)

# Redis connection
redis_client: Optional[redis.Redis] = None
_redis_unavailable = False

# Format: {key: {'count': int, 'reset_time': int}}
memory_cache: dict[str, dict] = {}
cache_lock = Lock()


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get or create Redis client from REDIS_URL.
    Returns None when Redis is not configured or unreachable.
    """
    global redis_client, _redis_unavailable

    if redis_client is not None or _redis_unavailable:
        return redis_client

    if not REDIS_URL:
        logger.info("REDIS_URL not set - using in-process rate limiting and plan cache")
        _redis_unavailable = True
        return None

    try:
        client = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=15,
            socket_timeout=30,
            retry_on_timeout=True,
            health_check_interval=30,
            max_connections=20,
        )
        client.ping()
        redis_client = client
        logger.info("Redis connected successfully via URL")
    except Exception as e:
        logger.error(f"❌ Failed to connect to Redis via URL: {str(e)}")
        _redis_unavailable = True
    return redis_client


def _check_memory(key: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
    current_time = int(time.time())
    with cache_lock:
        entry = memory_cache.get(key)
        if entry is None or current_time >= entry["reset_time"]:
            entry = {"count": 0, "reset_time": current_time + window_seconds}
            memory_cache[key] = entry

        is_allowed = entry["count"] < limit
        if is_allowed:
            entry["count"] += 1
        return is_allowed, entry["count"], entry["reset_time"] - current_time


def check_rate_limit(key: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
    """Check if rate limit is exceeded

    Returns:
        Tuple of (is_allowed, current_count, ttl_seconds)
    """
    client = get_redis_client()
    if client is None:
        return _check_memory(key, limit, window_seconds)

    try:
        pipe = client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        pipe.ttl(key)
        count, _, ttl = pipe.execute()
        return count <= limit, count, max(int(ttl), 0)
    except Exception as e:
        logger.warning(f"⚠️ Redis rate limit failed, using memory only: {e}")
        return _check_memory(key, limit, window_seconds)


def create_rate_limiter(limit: int, window_seconds: int, key_prefix: str = "rate_limit"):
    """
    Create a per-client-IP rate limiter dependency

    Example usage:
        limit_polling = create_rate_limiter(limit=30, window_seconds=60, key_prefix="check_activate")

        @router.post("/check-activate", dependencies=[Depends(limit_polling)])
        async def check_activate(...):
            ...
    """

    async def rate_limiter(request: Request):
        client_ip = request.client.host if request.client else "unknown"
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_ip = forwarded.split(",")[0].strip()

        key = f"{key_prefix}:{client_ip}"
        is_allowed, current_count, ttl = check_rate_limit(key, limit, window_seconds)

        if not is_allowed:
            logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {current_count}/{limit} requests used")
            raise HTTPException(
                status_code=429,
                detail={
                    "message": f"Rate limit exceeded. Maximum {limit} requests per {window_seconds} seconds.",
                    "retry_after": ttl,
                },
                headers={"Retry-After": str(ttl)},
            )

    return rate_limiter
