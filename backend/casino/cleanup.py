"""Empty table cleanup: background task that removes abandoned tables.

A table is removed when nobody is seated, no hand is in progress and there
has been no activity for EMPTY_TABLE_TTL seconds (default 1 h).  Seated
tables are never touched, so teardown can only happen between hands.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time

from casino import room, store
from casino.table import Table

logger = logging.getLogger(__name__)

# How often the cleanup loop runs (seconds).  Default: every 5 minutes.
CLEANUP_INTERVAL: float = 5 * 60

# Idle time before an empty table is deleted (seconds).
EMPTY_TABLE_TTL: float = float(os.getenv("EMPTY_TABLE_TTL", str(60 * 60)))


async def cleanup_empty_tables(ttl: float | None = None) -> dict[str, list[str]]:
    """Scan all tables and delete the idle empty ones.

    Returns a dict with 'deleted' (ids removed) and 'kept' (ids retained).
    """
    threshold = EMPTY_TABLE_TTL if ttl is None else ttl
    s = store.get_store()
    deleted: list[str] = []
    kept: list[str] = []

    for table_id in await s.keys(room.TABLES):
        try:
            async with room._table_lock(table_id):
                data = await s.get(room.TABLES, table_id)
                if data is None:
                    continue
                table = Table.from_dict(data)
                idle = time.time() - table.last_activity
                if table.seats or table.hand_active or idle < threshold:
                    kept.append(table_id)
                    continue
                await s.delete(room.TABLES, table_id)
                await s.delete(room.COMMENTARY, table_id)
            logger.info("Cleaned up table %s (idle=%.1fm)", table_id, idle / 60)
            deleted.append(table_id)
        except Exception:
            logger.exception("Error checking table %s for cleanup", table_id)
            kept.append(table_id)

    return {"deleted": deleted, "kept": kept}


class TableCleaner:
    """Background asyncio task that periodically removes empty tables."""

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Table cleaner started (interval=%ds)", int(CLEANUP_INTERVAL))

    def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Table cleaner stopped")

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(CLEANUP_INTERVAL)
                try:
                    result = await cleanup_empty_tables()
                    if result["deleted"]:
                        logger.info(
                            "Cleanup pass: deleted %d table(s): %s",
                            len(result["deleted"]),
                            ", ".join(result["deleted"]),
                        )
                    else:
                        logger.debug("Cleanup pass: nothing to delete")
                except Exception:
                    logger.exception("Cleanup pass failed")
        except asyncio.CancelledError:
            pass


# Singleton
table_cleaner = TableCleaner()
