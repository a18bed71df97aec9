"""
Idle reaper: one background task that disconnects members whose last pose is
older than the idle timeout.

The reaper never edits the session store. It closes the stale connection and
hands it to the router's normal disconnect path, so a reap looks exactly like
the client leaving.
"""
import asyncio
import logging
from typing import Optional

from .router import EventRouter

logger = logging.getLogger("posesync")


class IdleReaper:
    def __init__(
        self,
        router: EventRouter,
        *,
        interval: float = 60.0,
        idle_timeout: float = 300.0,
    ) -> None:
        self.router = router
        self.interval = interval
        self.idle_timeout = idle_timeout
        self._task: Optional[asyncio.Task] = None

    async def sweep(self) -> int:
        """Run one pass; returns how many members were reaped"""
        store = self.router.store
        stale = []
        for session_id, user_id, connection in store.stale_members(store.now(), self.idle_timeout):
            logger.info("🧹 Reaping idle %s from %s", user_id, session_id)
            # Departure is announced before the close handshake completes
            self.router.on_disconnect(connection)
            stale.append(connection)

        results = await asyncio.gather(
            *(connection.close("idle timeout") for connection in stale),
            return_exceptions=True,
        )
        for connection, result in zip(stale, results):
            if isinstance(result, Exception):
                logger.error("Failed to close idle connection %s: %s", connection, result)
        return len(stale)

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Reaper sweep error: %s", e)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="idle-reaper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
