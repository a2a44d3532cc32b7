"""
Redis-based rate limiter for public tracking endpoints.
Uses sliding window counter pattern for accurate rate limiting.
"""
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


async def check_rate_limit(
    key: str,
    limit: int,
    window: int = WINDOW_SECONDS,
) -> tuple[bool, Optional[int]]:
    """
    Check if a request is within rate limits using Redis sliding window.

    Returns: (allowed: bool, retry_after_seconds: int | None)
    """
    try:
        from growth.utils.redis_client import get_redis
        redis = await get_redis()

        redis_key = f"growth:ratelimit:{key}"
        now = time.time()
        window_start = now - window

        pipe = redis.pipeline()
        # Remove expired entries
        pipe.zremrangebyscore(redis_key, 0, window_start)
        # Add current request
        pipe.zadd(redis_key, {str(now): now})
        # Count requests in window
        pipe.zcard(redis_key)
        # Set expiry on the key
        pipe.expire(redis_key, window + 1)

        results = await pipe.execute()
        request_count = results[2]

        if request_count > limit:
            # The window frees up when its oldest entry ages out
            oldest = await redis.zrange(redis_key, 0, 0, withscores=True)
            window_start = oldest[0][1] if oldest else now
            retry_after = int(window - (now - window_start))
            logger.warning(
                "Rate limit exceeded: key=%s count=%d limit=%d",
                key, request_count, limit,
            )
            return False, max(retry_after, 1)

        return True, None
    except Exception as e:
        # Tracking must never break a redirect - allow through when Redis is down
        logger.warning("Rate limiter Redis error: %s. Allowing request.", str(e))
        return True, None


async def check_track_ref_limit(client_ip: str) -> tuple[bool, Optional[int]]:
    """Per-IP limit for the ?ref= click tracking endpoint."""
    from growth.config import get_settings
    settings = get_settings()
    return await check_rate_limit(
        f"track_ref:ip:{client_ip}",
        settings.track_ref_rate_limit,
        settings.track_ref_rate_window,
    )
