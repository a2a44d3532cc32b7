"""
Tests for growth/api/health.py - liveness and readiness endpoints.
"""
from datetime import datetime
from unittest.mock import AsyncMock, patch

from growth.api.health import VERSION, health_check, readiness_check


def _redis(ping_ok=True):
    redis = AsyncMock()
    if ping_ok:
        redis.ping = AsyncMock(return_value=True)
    else:
        redis.ping = AsyncMock(side_effect=ConnectionError("redis down"))
    return redis


# ---------------------------------------------------------------------------
# GET /health - basic liveness
# ---------------------------------------------------------------------------


class TestHealthCheck:
    async def test_returns_healthy(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert result["version"] == VERSION == "1.0.0"

    async def test_timestamp_is_utc_iso(self):
        """Timestamp should be parseable ISO format."""
        result = await health_check()
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None


# ---------------------------------------------------------------------------
# GET /health/ready - readiness check (DB + Redis)
# ---------------------------------------------------------------------------


class TestReadinessCheck:
    async def test_all_healthy_returns_ready(self):
        mock_db = AsyncMock()
        with patch("growth.utils.redis_client.get_redis", new_callable=AsyncMock, return_value=_redis()):
            result = await readiness_check(db=mock_db)

        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "redis": True}
        mock_db.execute.assert_awaited_once()

    async def test_redis_failure_is_degraded(self):
        """Redis only backs rate limits and heartbeats, so the service stays up."""
        with patch("growth.utils.redis_client.get_redis", new_callable=AsyncMock, return_value=_redis(False)):
            result = await readiness_check(db=AsyncMock())

        assert result["status"] == "degraded"
        assert result["checks"]["redis"] is False

    async def test_redis_unreachable_is_degraded(self):
        with patch(
            "growth.utils.redis_client.get_redis",
            new_callable=AsyncMock,
            side_effect=ConnectionError("no route"),
        ):
            result = await readiness_check(db=AsyncMock())
        assert result["status"] == "degraded"

    async def test_db_failure_is_unhealthy(self):
        mock_db = AsyncMock()
        mock_db.execute = AsyncMock(side_effect=Exception("connection refused"))
        with patch("growth.utils.redis_client.get_redis", new_callable=AsyncMock, return_value=_redis()):
            result = await readiness_check(db=mock_db)

        assert result["status"] == "unhealthy"
        assert result["checks"] == {"database": False, "redis": True}

    async def test_real_database(self, db, mock_redis):
        result = await readiness_check(db=db)
        assert result["checks"]["database"] is True
        assert result["status"] == "ready"
