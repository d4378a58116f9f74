"""Append-only audit log of chain gateway calls."""

from __future__ import annotations

import json
import sqlite3
import uuid
from typing import Any

from conduit_core.logger import get_logger
from conduit_core.models import ContractTxn, TxStatus
from conduit_core.storage.database import Database, now_iso

log = get_logger("txlog")


class TransactionLog:
    """
    Records every gateway call as pending, confirmed or failed.

    Rows are never updated; a confirmation is a second row for the same
    method. A write failure here is logged and never blocks settlement.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def append(
        self,
        agent_id: str,
        method: str,
        tx_ref: str | None,
        status: TxStatus | str,
        params: dict[str, Any] | None = None,
        error: str | None = None,
        backend: str | None = None,
    ) -> ContractTxn:
        txn = ContractTxn(
            id=f"txn-{uuid.uuid4().hex[:12]}",
            agent_id=agent_id,
            method=method,
            status=str(status),
            created_at=now_iso(),
            backend=backend,
            tx_ref=tx_ref,
            params=params,
            error=error,
        )
        try:
            self.db.execute_insert(
                """INSERT INTO contract_txns
                   (id, agent_id, method, backend, tx_ref, status, params, error, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    txn.id,
                    txn.agent_id,
                    txn.method,
                    txn.backend,
                    txn.tx_ref,
                    txn.status,
                    json.dumps(params, default=str) if params is not None else None,
                    txn.error,
                    txn.created_at,
                ),
            )
        except sqlite3.Error as exc:
            log.warning(
                f"could not record {method} ({status}): {exc}",
                extra={"agent_id": agent_id, "method": method},
            )
        return txn

    def list(
        self,
        agent_id: str | None = None,
        status: str | None = None,
        method: str | None = None,
        limit: int = 100,
    ) -> list[ContractTxn]:
        """Newest entries first, optionally filtered."""
        clauses: list[str] = []
        params: list[Any] = []
        if agent_id:
            clauses.append("agent_id = ?")
            params.append(agent_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if method:
            clauses.append("method = ?")
            params.append(method)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.execute(
            f"SELECT * FROM contract_txns {where} ORDER BY seq DESC LIMIT ?",
            (*params, limit),
        )
        return [_row_to_txn(row) for row in rows]


def _row_to_txn(row: sqlite3.Row) -> ContractTxn:
    return ContractTxn(
        id=row["id"],
        agent_id=row["agent_id"],
        method=row["method"],
        status=row["status"],
        created_at=row["created_at"],
        backend=row["backend"],
        tx_ref=row["tx_ref"],
        params=json.loads(row["params"]) if row["params"] else None,
        error=row["error"],
    )
