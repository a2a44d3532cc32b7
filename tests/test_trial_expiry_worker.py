"""
Tests for growth/workers/trial_expiry.py - the periodic expiry sweep.
"""
import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from growth.workers.trial_expiry import (
    HEARTBEAT_KEY,
    _heartbeat,
    run_trial_expiry,
    sweep_expired_trials,
)


def _session_context(db):
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=db)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return ctx


class TestSweepExpiredTrials:
    async def test_sweeps_and_commits(self):
        mock_db = AsyncMock()
        with patch("growth.database.async_session_factory", return_value=_session_context(mock_db)), \
             patch("growth.services.trial_invites.expire_due_invites",
                   new_callable=AsyncMock, return_value=4) as mock_expire:
            expired = await sweep_expired_trials()

        assert expired == 4
        mock_expire.assert_awaited_once_with(mock_db)
        mock_db.commit.assert_awaited_once()

    async def test_failure_does_not_commit(self):
        mock_db = AsyncMock()
        with patch("growth.database.async_session_factory", return_value=_session_context(mock_db)), \
             patch("growth.services.trial_invites.expire_due_invites",
                   new_callable=AsyncMock, side_effect=RuntimeError("db gone")):
            with pytest.raises(RuntimeError):
                await sweep_expired_trials()
        mock_db.commit.assert_not_awaited()


class TestHeartbeat:
    async def test_writes_key_with_ttl(self, mock_redis):
        await _heartbeat(900)
        mock_redis.set.assert_awaited_once()
        args, kwargs = mock_redis.set.call_args
        assert args[0] == HEARTBEAT_KEY
        assert kwargs["ex"] == 1800

    async def test_redis_failure_is_swallowed(self, mock_redis):
        mock_redis.set.side_effect = ConnectionError("redis down")
        await _heartbeat(900)


class TestRunLoop:
    async def test_loop_survives_errors_and_stops_on_cancel(self):
        calls = []

        async def flaky_sweep():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("transient")
            return 2

        settings = MagicMock()
        settings.trial_expiry_interval_seconds = 0
        with patch("growth.config.get_settings", return_value=settings), \
             patch("growth.workers.trial_expiry.sweep_expired_trials", side_effect=flaky_sweep), \
             patch("growth.workers.trial_expiry._heartbeat", new_callable=AsyncMock):
            task = asyncio.create_task(run_trial_expiry())
            for _ in range(20):
                await asyncio.sleep(0)
                if len(calls) >= 3:
                    break
            task.cancel()
            await task

        assert len(calls) >= 3
        assert task.done()
