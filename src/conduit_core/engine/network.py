"""Connection/Activity Recorder - pairwise bandwidth and the append-only activity log."""

from __future__ import annotations

import sqlite3
import uuid
from typing import Any

from conduit_core.models import ActivityEvent, ActivityType, Connection
from conduit_core.storage.database import Database, now_iso

BANDWIDTH_DEFAULT = 0.5
BANDWIDTH_STEP = 0.05
BANDWIDTH_MAX = 1.0


class ConnectionRecorder:
    """
    Tracks interaction affinity between unordered agent pairs.

    (A, B) and (B, A) are the same connection; the unique pair index in the
    store keeps it to one row.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def create_or_bump(self, source_agent_id: str, target_agent_id: str) -> Connection:
        with self.db.transaction() as conn:
            return self.bump(conn, source_agent_id, target_agent_id)

    @staticmethod
    def bump(conn: sqlite3.Connection, source_agent_id: str, target_agent_id: str) -> Connection:
        """Create the pair at default bandwidth, or raise it one step (capped)."""
        now = now_iso()
        row = conn.execute(
            """
            SELECT * FROM connections
            WHERE min(source_agent_id, target_agent_id) = min(?, ?)
            AND max(source_agent_id, target_agent_id) = max(?, ?)
            """,
            (source_agent_id, target_agent_id, source_agent_id, target_agent_id),
        ).fetchone()

        if row is None:
            connection = Connection(
                id=f"conn-{uuid.uuid4().hex[:8]}",
                source_agent_id=source_agent_id,
                target_agent_id=target_agent_id,
                bandwidth=BANDWIDTH_DEFAULT,
                last_interaction_at=now,
            )
            conn.execute(
                """
                INSERT INTO connections (id, source_agent_id, target_agent_id, bandwidth, last_interaction_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    connection.id,
                    connection.source_agent_id,
                    connection.target_agent_id,
                    connection.bandwidth,
                    connection.last_interaction_at,
                ),
            )
            return connection

        bandwidth = round(min(BANDWIDTH_MAX, row["bandwidth"] + BANDWIDTH_STEP), 4)
        conn.execute(
            "UPDATE connections SET bandwidth = ?, last_interaction_at = ? WHERE id = ?",
            (bandwidth, now, row["id"]),
        )
        return Connection(
            id=row["id"],
            source_agent_id=row["source_agent_id"],
            target_agent_id=row["target_agent_id"],
            bandwidth=bandwidth,
            last_interaction_at=now,
        )

    def find(self, agent_a: str, agent_b: str) -> Connection | None:
        rows = self.db.execute(
            """
            SELECT * FROM connections
            WHERE min(source_agent_id, target_agent_id) = min(?, ?)
            AND max(source_agent_id, target_agent_id) = max(?, ?)
            """,
            (agent_a, agent_b, agent_a, agent_b),
        )
        return self._row_to_connection(rows[0]) if rows else None

    def list(self, agent_id: str | None = None) -> list[Connection]:
        if agent_id:
            rows = self.db.execute(
                """
                SELECT * FROM connections
                WHERE source_agent_id = ? OR target_agent_id = ?
                ORDER BY bandwidth DESC
                """,
                (agent_id, agent_id),
            )
        else:
            rows = self.db.execute("SELECT * FROM connections ORDER BY bandwidth DESC")
        return [self._row_to_connection(row) for row in rows]

    def _row_to_connection(self, row: Any) -> Connection:
        return Connection(
            id=row["id"],
            source_agent_id=row["source_agent_id"],
            target_agent_id=row["target_agent_id"],
            bandwidth=row["bandwidth"],
            last_interaction_at=row["last_interaction_at"],
        )


class ActivityRecorder:
    """Append-only activity log. Events are never updated or deleted."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def record(
        self,
        message: str,
        type: str,
        connection_id: str | None = None,
        task_id: str | None = None,
    ) -> ActivityEvent:
        with self.db.connect() as conn:
            return self.append(conn, message, type, connection_id, task_id)

    @staticmethod
    def append(
        conn: sqlite3.Connection,
        message: str,
        type: str,
        connection_id: str | None = None,
        task_id: str | None = None,
    ) -> ActivityEvent:
        event = ActivityEvent(
            id=f"evt-{uuid.uuid4().hex[:12]}",
            timestamp=now_iso(),
            message=message,
            type=ActivityType(type).value,
            connection_id=connection_id,
            task_id=task_id,
        )
        conn.execute(
            """
            INSERT INTO activity_events (id, timestamp, message, type, connection_id, task_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (event.id, event.timestamp, event.message, event.type, event.connection_id, event.task_id),
        )
        return event

    def list(self, limit: int = 50, type: str | None = None) -> list[ActivityEvent]:
        """Most recent events first."""
        if type:
            rows = self.db.execute(
                "SELECT * FROM activity_events WHERE type = ? ORDER BY seq DESC LIMIT ?",
                (ActivityType(type).value, limit),
            )
        else:
            rows = self.db.execute(
                "SELECT * FROM activity_events ORDER BY seq DESC LIMIT ?", (limit,)
            )
        return [
            ActivityEvent(
                id=row["id"],
                timestamp=row["timestamp"],
                message=row["message"],
                type=row["type"],
                connection_id=row["connection_id"],
                task_id=row["task_id"],
            )
            for row in rows
        ]
