"""Tests for the SQLite storage layer."""

import sqlite3
from decimal import Decimal
from pathlib import Path

import pytest

from conduit_core.storage.database import Database, now_iso


def _insert_agent(db: Database, agent_id: str, balance: str = "0") -> None:
    now = now_iso()
    db.execute_insert(
        "INSERT INTO agents (id, role, settlement_balance, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (agent_id, "executor", balance, now, now),
    )


def test_ensure_tables(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "conduit")
    db.ensure_tables()
    assert db.db_path.exists()


def test_ensure_tables_is_idempotent(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "conduit")
    db.ensure_tables()
    db.ensure_tables()
    rows = db.execute("SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'agents'")
    assert len(rows) == 1


def test_wal_mode(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "conduit")
    db.ensure_tables()
    with db.connect() as conn:
        result = conn.execute("PRAGMA journal_mode").fetchone()
        assert result[0] == "wal"


def test_transaction_rolls_back_on_error(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "conduit")
    db.ensure_tables()
    _insert_agent(db, "agent-a", "10")

    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            db.adjust_balance(conn, "agent-a", Decimal("-4"))
            raise RuntimeError("boom")

    rows = db.execute("SELECT settlement_balance FROM agents WHERE id = ?", ("agent-a",))
    assert rows[0]["settlement_balance"] == "10"


def test_adjust_balance(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "conduit")
    db.ensure_tables()
    _insert_agent(db, "agent-a", "10")

    with db.transaction() as conn:
        assert db.adjust_balance(conn, "agent-a", Decimal("2.5")) == Decimal("12.5")
        assert db.adjust_balance(conn, "agent-missing", Decimal("1")) is None


def test_attestation_score_bounds_enforced(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "conduit")
    db.ensure_tables()
    _insert_agent(db, "agent-a")

    with pytest.raises(sqlite3.IntegrityError):
        db.execute("UPDATE agents SET attestation_score = 1.5 WHERE id = ?", ("agent-a",))


def test_activity_events_are_append_only(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "conduit")
    db.ensure_tables()
    db.execute_insert(
        "INSERT INTO activity_events (id, timestamp, message, type) VALUES (?, ?, ?, ?)",
        ("evt-1", now_iso(), "hello", "hired"),
    )

    with pytest.raises(sqlite3.IntegrityError):
        db.execute("UPDATE activity_events SET message = 'changed' WHERE id = 'evt-1'")
    with pytest.raises(sqlite3.IntegrityError):
        db.execute("DELETE FROM activity_events WHERE id = 'evt-1'")


def test_connection_pair_is_unique_regardless_of_order(tmp_path: Path) -> None:
    db = Database(data_dir=tmp_path / "conduit")
    db.ensure_tables()
    _insert_agent(db, "agent-a")
    _insert_agent(db, "agent-b")
    db.execute_insert(
        "INSERT INTO connections (id, source_agent_id, target_agent_id, last_interaction_at) VALUES (?, ?, ?, ?)",
        ("conn-1", "agent-a", "agent-b", now_iso()),
    )

    with pytest.raises(sqlite3.IntegrityError):
        db.execute_insert(
            "INSERT INTO connections (id, source_agent_id, target_agent_id, last_interaction_at) VALUES (?, ?, ?, ?)",
            ("conn-2", "agent-b", "agent-a", now_iso()),
        )
