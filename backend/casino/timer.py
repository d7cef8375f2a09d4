"""Action timer: background task that acts for agents who exceed their turn timeout."""

from __future__ import annotations

import asyncio
import logging
import time

from casino import room

logger = logging.getLogger(__name__)

# How often the timer loop checks for expired deadlines (seconds)
TICK_INTERVAL = 1.0


class ActionTimer:
    """Tracks per-table action deadlines with a single asyncio background loop.

    The loop only schedules; the check-or-fold itself is applied by
    ``room.handle_timeout`` under the table lock, so a timeout and an
    agent's own action for the same turn can never both land.
    """

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None
        # table_id -> deadline (Unix timestamp)
        self._deadlines: dict[str, float] = {}

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Action timer started")

    def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Action timer stopped")

    def set_deadline(self, table_id: str, deadline: float | None) -> None:
        """Register (or clear) the action deadline for a table."""
        if deadline is None or deadline <= 0:
            self._deadlines.pop(table_id, None)
        else:
            self._deadlines[table_id] = deadline

    def clear(self, table_id: str) -> None:
        self._deadlines.pop(table_id, None)

    def deadline(self, table_id: str) -> float | None:
        return self._deadlines.get(table_id)

    async def resync(self) -> None:
        """Pick up deadlines of hands already in the store (after a restart)."""
        deadlines = await room.pending_deadlines()
        self._deadlines.update(deadlines)
        if deadlines:
            logger.info("Action timer resumed %d table(s)", len(deadlines))

    async def tick(self) -> None:
        now = time.time()
        expired = [tid for tid, dl in list(self._deadlines.items()) if now >= dl]
        for table_id in expired:
            self._deadlines.pop(table_id, None)
            try:
                await self._handle_timeout(table_id)
            except Exception:
                logger.exception("Timer error for table %s", table_id)

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(TICK_INTERVAL)
                await self.tick()
        except asyncio.CancelledError:
            pass

    async def _handle_timeout(self, table_id: str) -> None:
        # Returns the still-pending deadline if the agent acted in time,
        # or the next player's deadline after the auto-action.
        next_deadline = await room.handle_timeout(table_id)
        self.set_deadline(table_id, next_deadline)


# Singleton
action_timer = ActionTimer()
