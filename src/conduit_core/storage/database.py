"""SQLite entity store with WAL mode and immediate write transactions."""

from __future__ import annotations

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any


def now_iso() -> str:
    return datetime.now().isoformat()


class Database:
    """SQLite storage layer for agents, tasks, escrows and their audit trails."""

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = data_dir or Path.home() / ".conduit"
        self.db_path = self.data_dir / "data" / "conduit.db"

    def _ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        (self.data_dir / "data").mkdir(exist_ok=True)
        (self.data_dir / "logs").mkdir(exist_ok=True)

    def _open(self) -> sqlite3.Connection:
        self._ensure_dirs()
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with WAL mode; statements run in one deferred transaction."""
        conn = self._open()
        conn.execute("BEGIN")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a connection holding the write lock from the first statement.

        BEGIN IMMEDIATE makes read-then-write sequences atomic: no other writer
        can commit between the read and the write.
        """
        conn = self._open()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def ensure_tables(self) -> None:
        """Create all tables if they don't exist."""
        conn = self._open()
        try:
            conn.executescript(_SCHEMA)
        finally:
            conn.close()

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        """Execute a query and return results."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.fetchall()

    def execute_insert(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Execute an insert and return lastrowid."""
        with self.connect() as conn:
            cursor = conn.execute(sql, params)
            return cursor.lastrowid or 0

    @staticmethod
    def adjust_balance(conn: sqlite3.Connection, agent_id: str, delta: Decimal) -> Decimal | None:
        """
        Apply a signed delta to an agent's settlement balance.

        Must run inside ``transaction()``; the immediate lock makes the
        read and the write a single atomic step. Returns the new balance,
        or None when the agent does not exist.
        """
        row = conn.execute(
            "SELECT settlement_balance FROM agents WHERE id = ?", (agent_id,)
        ).fetchone()
        if row is None:
            return None
        balance = Decimal(row["settlement_balance"]) + delta
        conn.execute(
            "UPDATE agents SET settlement_balance = ?, updated_at = ? WHERE id = ?",
            (str(balance), now_iso(), agent_id),
        )
        return balance


_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    name TEXT,
    role TEXT NOT NULL CHECK (role IN ('router', 'executor', 'settler')),
    capabilities TEXT NOT NULL DEFAULT '[]',
    attestation_score REAL NOT NULL DEFAULT 0.5,
    settlement_balance TEXT NOT NULL DEFAULT '0',
    status TEXT NOT NULL DEFAULT 'idle' CHECK (status IN ('idle', 'processing', 'dormant')),
    deployed_chain TEXT NOT NULL DEFAULT 'base',
    identity_token_id TEXT,
    wallet_address TEXT,
    encrypted_key TEXT,
    backend_registered INTEGER NOT NULL DEFAULT 0,
    backend_tx_ref TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK (attestation_score BETWEEN 0.0 AND 1.0)
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    requirements TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'dispatched', 'completed', 'failed')),
    requester_agent_id TEXT NOT NULL REFERENCES agents(id),
    assigned_agent_id TEXT REFERENCES agents(id),
    escrow_amount TEXT,
    result TEXT,
    created_at TEXT NOT NULL,
    dispatched_at TEXT,
    completed_at TEXT,
    chain_tx_ref TEXT,
    CHECK ((status = 'pending') = (assigned_agent_id IS NULL))
);

CREATE TABLE IF NOT EXISTS escrows (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    payer_agent_id TEXT NOT NULL REFERENCES agents(id),
    payee_agent_id TEXT REFERENCES agents(id),
    amount TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'locked' CHECK (status IN ('locked', 'released', 'refunded')),
    chain TEXT,
    tx_ref TEXT,
    settle_tx_ref TEXT,
    created_at TEXT NOT NULL,
    settled_at TEXT
);

CREATE TABLE IF NOT EXISTS attestations (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agents(id),
    attester_id TEXT NOT NULL,
    task_id TEXT REFERENCES tasks(id),
    score REAL NOT NULL CHECK (score BETWEEN 0.0 AND 1.0),
    metadata TEXT,
    chain TEXT,
    tx_ref TEXT,
    topic_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS connections (
    id TEXT PRIMARY KEY,
    source_agent_id TEXT NOT NULL REFERENCES agents(id),
    target_agent_id TEXT NOT NULL REFERENCES agents(id),
    bandwidth REAL NOT NULL DEFAULT 0.5 CHECK (bandwidth BETWEEN 0.0 AND 1.0),
    last_interaction_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS activity_events (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    timestamp TEXT NOT NULL,
    message TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('hired', 'payment', 'trust')),
    connection_id TEXT,
    task_id TEXT
);

CREATE TABLE IF NOT EXISTS contract_txns (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT UNIQUE NOT NULL,
    agent_id TEXT NOT NULL,
    method TEXT NOT NULL,
    backend TEXT,
    tx_ref TEXT,
    status TEXT NOT NULL CHECK (status IN ('pending', 'confirmed', 'failed')),
    params TEXT,
    error TEXT,
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_connections_pair ON connections(
    min(source_agent_id, target_agent_id),
    max(source_agent_id, target_agent_id)
);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_escrows_task ON escrows(task_id);
CREATE INDEX IF NOT EXISTS idx_escrows_payer ON escrows(payer_agent_id, status);
CREATE INDEX IF NOT EXISTS idx_escrows_payee ON escrows(payee_agent_id, status);
CREATE INDEX IF NOT EXISTS idx_attestations_agent ON attestations(agent_id);
CREATE INDEX IF NOT EXISTS idx_contract_txns_agent ON contract_txns(agent_id, method);

CREATE TRIGGER IF NOT EXISTS activity_events_append_only_update
BEFORE UPDATE ON activity_events
BEGIN
    SELECT RAISE(ABORT, 'activity_events is append-only');
END;

CREATE TRIGGER IF NOT EXISTS activity_events_append_only_delete
BEFORE DELETE ON activity_events
BEGIN
    SELECT RAISE(ABORT, 'activity_events is append-only');
END;

CREATE TRIGGER IF NOT EXISTS contract_txns_append_only
BEFORE UPDATE ON contract_txns
BEGIN
    SELECT RAISE(ABORT, 'contract_txns is append-only');
END;

CREATE TRIGGER IF NOT EXISTS attestations_immutable
BEFORE UPDATE ON attestations
BEGIN
    SELECT RAISE(ABORT, 'attestations are immutable');
END;

INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""
