import asyncio
from unittest.mock import AsyncMock

import pytest


class TestChatSweeper:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, service):
        service.sweeper.start()
        assert service.sweeper.running
        service.sweeper.start()
        assert len(service.sweeper._tasks) == 2
        await service.sweeper.stop()
        assert not service.sweeper.running

    @pytest.mark.asyncio
    async def test_failing_sweep_is_logged_and_survived(self, service, caplog):
        sweep = AsyncMock(side_effect=RuntimeError("database went away"))
        assert await service.sweeper.run_once("idle", sweep) is None
        assert "idle sweep failed" in caplog.text

    @pytest.mark.asyncio
    async def test_loop_keeps_running_after_failure(self, service):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first run fails")
            return 0

        task = asyncio.create_task(service.sweeper._loop("typing", flaky, 0.01))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_idle_loop_ends_stale_sessions(self, service, connect, user):
        _, ws = connect(user)
        session = await service.manager.start_session(user)
        service.settings.IDLE_TIMEOUT_SECONDS = 0
        service.settings.IDLE_SWEEP_INTERVAL_SECONDS = 0.01
        service.sweeper.start()
        for _ in range(50):
            if not (await service.store.get_session(session.id)).is_open:
                break
            await asyncio.sleep(0.02)
        await service.sweeper.stop()
        await service.registry.drain()
        assert (await service.store.get_session(session.id)).end_reason == "idle_timeout"
        assert ws.of_type("session_ended")[0]["reason"] == "idle_timeout"
