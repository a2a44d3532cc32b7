"""
Trial expiry worker - moves running trials past their end date to EXPIRED.

Runs every settings.trial_expiry_interval_seconds (default 15 minutes).
The sweep is a single UPDATE, so overlapping runs or restarts are harmless.
"""
import asyncio
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

HEARTBEAT_KEY = "growth:worker_health:trial_expiry"


async def _heartbeat(interval: int) -> None:
    """Store heartbeat timestamp in Redis."""
    try:
        from growth.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.set(
            HEARTBEAT_KEY,
            datetime.now(timezone.utc).isoformat(),
            ex=interval * 2,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


async def sweep_expired_trials() -> int:
    """One sweep in its own transaction. Returns the number of invites expired."""
    from growth.database import async_session_factory
    from growth.services.trial_invites import expire_due_invites

    async with async_session_factory() as db:
        expired = await expire_due_invites(db)
        await db.commit()
    return expired


async def run_trial_expiry() -> None:
    """Main loop for the trial expiry worker."""
    from growth.config import get_settings
    interval = get_settings().trial_expiry_interval_seconds
    logger.info("Trial expiry worker started (interval=%ds)", interval)

    while True:
        try:
            expired = await sweep_expired_trials()
            if expired > 0:
                logger.info("Trial expiry sweep: %d invites expired", expired)
            await _heartbeat(interval)
        except asyncio.CancelledError:
            logger.info("Trial expiry worker shutting down")
            return
        except Exception as e:
            logger.error("Trial expiry worker error: %s", str(e), exc_info=True)

        try:
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Trial expiry worker shutting down")
            return
