"""
Escrow Ledger

Locks, releases and refunds funds against agent balances. The local ledger
is the system of record: balance movements are committed before the chain
gateway is called, and a failed gateway call only leaves a zero reference
on the escrow (and a failed row in the transaction log).
"""

from __future__ import annotations

import sqlite3
import uuid
from decimal import Decimal
from typing import Any

from conduit_core.chains.factory import ChainGateway
from conduit_core.logger import get_logger
from conduit_core.models import AgentBalance, Escrow, EscrowStatus, TaskStatus, to_decimal
from conduit_core.storage.database import Database, now_iso

log = get_logger("ledger")


class EscrowLedger:
    """Escrow lifecycle: locked -> released | refunded, exactly once."""

    def __init__(self, db: Database, gateway: ChainGateway) -> None:
        self.db = db
        self.gateway = gateway

    def create_escrow(
        self,
        task_id: str,
        payer_agent_id: str,
        amount: Decimal | str | int,
        payee_agent_id: str | None = None,
    ) -> Escrow | None:
        """
        Debit the payer and lock the amount against a task.

        Balance sufficiency is the caller's concern; the payer may go
        negative. A task holds at most one escrow, funded by its requester
        while the task is still pending. Returns None when the task, payer
        or payee does not exist, or when the task cannot take an escrow.

        Raises:
            ValueError: amount is not positive
        """
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValueError(f"escrow amount must be positive, got {amount}")

        escrow_id = f"escrow-{uuid.uuid4().hex[:8]}"
        with self.db.transaction() as conn:
            task = conn.execute(
                "SELECT status, requester_agent_id FROM tasks WHERE id = ?", (task_id,)
            ).fetchone()
            if task is None or task["status"] != TaskStatus.PENDING:
                return None
            if task["requester_agent_id"] != payer_agent_id:
                return None
            if conn.execute("SELECT 1 FROM escrows WHERE task_id = ?", (task_id,)).fetchone():
                return None
            if payee_agent_id is not None and not conn.execute(
                "SELECT 1 FROM agents WHERE id = ?", (payee_agent_id,)
            ).fetchone():
                return None
            if self.db.adjust_balance(conn, payer_agent_id, -amount) is None:
                return None
            conn.execute(
                """
                INSERT INTO escrows (id, task_id, payer_agent_id, payee_agent_id, amount, status, chain, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    escrow_id,
                    task_id,
                    payer_agent_id,
                    payee_agent_id,
                    str(amount),
                    EscrowStatus.LOCKED.value,
                    self.gateway.escrow.backend,
                    now_iso(),
                ),
            )
            conn.execute(
                "UPDATE tasks SET escrow_amount = ? WHERE id = ?", (str(amount), task_id)
            )

        tx_ref = self.gateway.lock_funds(task_id, payer_agent_id, str(amount))
        self.db.execute("UPDATE escrows SET tx_ref = ? WHERE id = ?", (tx_ref, escrow_id))
        log.info(
            f"locked {amount}",
            extra={"escrow_id": escrow_id, "task_id": task_id, "agent_id": payer_agent_id, "tx_ref": tx_ref},
        )
        return self.get_escrow(escrow_id)

    def release_escrow(self, escrow_id: str) -> Escrow | None:
        """Credit the payee. None unless the escrow is locked and has a payee."""
        with self.db.transaction() as conn:
            escrow = self.resolve(conn, escrow_id, EscrowStatus.RELEASED)
        if escrow is None:
            return None
        return self.settle(escrow)

    def refund_escrow(self, escrow_id: str) -> Escrow | None:
        """Credit the payer back. None unless the escrow is locked."""
        with self.db.transaction() as conn:
            escrow = self.resolve(conn, escrow_id, EscrowStatus.REFUNDED)
        if escrow is None:
            return None
        return self.settle(escrow)

    def resolve(
        self, conn: sqlite3.Connection, escrow_id: str, outcome: EscrowStatus
    ) -> Escrow | None:
        """
        Flip a locked escrow and credit the beneficiary inside ``conn``.

        The status change is conditional on ``locked``, so a second call
        (or a concurrent one) moves no funds.
        """
        row = conn.execute("SELECT * FROM escrows WHERE id = ?", (escrow_id,)).fetchone()
        if row is None or row["status"] != EscrowStatus.LOCKED:
            return None

        if outcome == EscrowStatus.RELEASED:
            beneficiary = row["payee_agent_id"]
            if beneficiary is None:
                return None
        else:
            beneficiary = row["payer_agent_id"]

        settled_at = now_iso()
        cursor = conn.execute(
            "UPDATE escrows SET status = ?, settled_at = ? WHERE id = ? AND status = ?",
            (outcome.value, settled_at, escrow_id, EscrowStatus.LOCKED.value),
        )
        if cursor.rowcount != 1:
            return None
        self.db.adjust_balance(conn, beneficiary, Decimal(row["amount"]))

        escrow = self._row_to_escrow(row)
        escrow.status = outcome.value
        escrow.settled_at = settled_at
        return escrow

    def settle(self, escrow: Escrow) -> Escrow:
        """Mirror an already-resolved escrow onto the chain and store the reference."""
        amount = str(escrow.amount)
        if escrow.status == EscrowStatus.RELEASED:
            assert escrow.payee_agent_id is not None
            tx_ref = self.gateway.release_funds(escrow.id, escrow.payee_agent_id, amount)
        else:
            tx_ref = self.gateway.refund_funds(escrow.id, escrow.payer_agent_id, amount)

        self.db.execute("UPDATE escrows SET settle_tx_ref = ? WHERE id = ?", (tx_ref, escrow.id))
        escrow.settle_tx_ref = tx_ref
        log.info(
            f"escrow {escrow.status}",
            extra={"escrow_id": escrow.id, "task_id": escrow.task_id, "tx_ref": tx_ref},
        )
        return escrow

    @staticmethod
    def backfill_payee(conn: sqlite3.Connection, task_id: str, payee_agent_id: str) -> None:
        conn.execute(
            "UPDATE escrows SET payee_agent_id = ? WHERE task_id = ? AND status = ?",
            (payee_agent_id, task_id, EscrowStatus.LOCKED.value),
        )

    @staticmethod
    def locked_escrow_id(conn: sqlite3.Connection, task_id: str) -> str | None:
        row = conn.execute(
            "SELECT id FROM escrows WHERE task_id = ? AND status = ? ORDER BY created_at LIMIT 1",
            (task_id, EscrowStatus.LOCKED.value),
        ).fetchone()
        return row["id"] if row else None

    def get_escrow(self, escrow_id: str) -> Escrow | None:
        rows = self.db.execute("SELECT * FROM escrows WHERE id = ?", (escrow_id,))
        return self._row_to_escrow(rows[0]) if rows else None

    def get_escrow_by_task(self, task_id: str) -> Escrow | None:
        rows = self.db.execute(
            "SELECT * FROM escrows WHERE task_id = ? ORDER BY created_at DESC LIMIT 1", (task_id,)
        )
        return self._row_to_escrow(rows[0]) if rows else None

    def get_agent_escrows(self, agent_id: str, status: str | None = None) -> list[Escrow]:
        sql = "SELECT * FROM escrows WHERE (payer_agent_id = ? OR payee_agent_id = ?)"
        params: tuple[Any, ...] = (agent_id, agent_id)
        if status:
            sql += " AND status = ?"
            params += (EscrowStatus(status).value,)
        rows = self.db.execute(sql + " ORDER BY created_at DESC", params)
        return [self._row_to_escrow(row) for row in rows]

    def get_agent_pending_escrows(self, agent_id: str) -> Decimal:
        """Sum of locked amounts where the agent is payer or payee."""
        return sum(
            (escrow.amount for escrow in self.get_agent_escrows(agent_id, EscrowStatus.LOCKED)),
            Decimal("0"),
        )

    def get_balance(self, agent_id: str) -> AgentBalance | None:
        rows = self.db.execute("SELECT settlement_balance FROM agents WHERE id = ?", (agent_id,))
        if not rows:
            return None
        return AgentBalance(
            agent_id=agent_id,
            balance=Decimal(rows[0]["settlement_balance"]),
            pending_escrow=self.get_agent_pending_escrows(agent_id),
        )

    def _row_to_escrow(self, row: Any) -> Escrow:
        return Escrow(
            id=row["id"],
            task_id=row["task_id"],
            payer_agent_id=row["payer_agent_id"],
            payee_agent_id=row["payee_agent_id"],
            amount=Decimal(row["amount"]),
            status=row["status"],
            chain=row["chain"],
            tx_ref=row["tx_ref"],
            settle_tx_ref=row["settle_tx_ref"],
            created_at=row["created_at"],
            settled_at=row["settled_at"],
        )
