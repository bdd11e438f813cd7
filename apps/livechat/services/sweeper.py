import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from apps.livechat.config import LivechatSettings
from apps.livechat.services.message_router import MessageRouter
from apps.livechat.services.session_manager import SessionLifecycleManager

logger = logging.getLogger(__name__)


class ChatSweeper:
    """Background loops that expire stale typing signals and idle sessions."""

    def __init__(self, manager: SessionLifecycleManager, router: MessageRouter, settings: LivechatSettings):
        self.manager = manager
        self.router = router
        self.settings = settings
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self):
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                self._loop("typing", self.router.expire_typing, self.settings.TYPING_SWEEP_INTERVAL_SECONDS),
                name="livechat-typing-sweeper",
            ),
            asyncio.create_task(
                self._loop("idle", self.manager.expire_idle_sessions, self.settings.IDLE_SWEEP_INTERVAL_SECONDS),
                name="livechat-idle-sweeper",
            ),
        ]
        logger.info("Live chat sweeper started")

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Live chat sweeper stopped")

    async def _loop(self, name: str, sweep: Callable[[], Awaitable], interval: float):
        while True:
            await asyncio.sleep(interval)
            await self.run_once(name, sweep)

    async def run_once(self, name: str, sweep: Callable[[], Awaitable]) -> Optional[object]:
        try:
            result = await sweep()
        except Exception as e:
            logger.exception(f"Live chat {name} sweep failed: {e}")
            return None
        count = len(result) if isinstance(result, list) else result
        if count:
            logger.info(f"Live chat {name} sweep expired {count} item(s)")
        return result
