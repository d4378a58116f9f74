"""Async read-only view of the activity log for streaming consumers."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import aiosqlite

from conduit_core.models import ActivityEvent


class ActivityFeed:
    """
    Reads activity events without blocking the event loop.

    Events are ordered by their insertion sequence, so ``since(seq)`` can be
    polled to tail the log.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    async def __aenter__(self) -> "ActivityFeed":
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[object],
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def recent(self, limit: int = 50) -> list[tuple[int, ActivityEvent]]:
        """Latest events, newest first, paired with their sequence number."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT * FROM activity_events ORDER BY seq DESC LIMIT ?", (limit,)
        )
        rows = await cursor.fetchall()
        return [(row["seq"], _row_to_event(row)) for row in rows]

    async def since(self, seq: int, limit: int = 100) -> list[tuple[int, ActivityEvent]]:
        """Events appended after ``seq``, oldest first."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT * FROM activity_events WHERE seq > ? ORDER BY seq ASC LIMIT ?",
            (seq, limit),
        )
        rows = await cursor.fetchall()
        return [(row["seq"], _row_to_event(row)) for row in rows]


def _row_to_event(row: aiosqlite.Row) -> ActivityEvent:
    return ActivityEvent(
        id=row["id"],
        timestamp=row["timestamp"],
        message=row["message"],
        type=row["type"],
        connection_id=row["connection_id"],
        task_id=row["task_id"],
    )
