"""
Task Coordinator

Owns the task state machine: pending -> dispatched -> completed | failed.
Every transition is a conditional write on the current status, so a task
is dispatched at most once and resolved at most once. Local bookkeeping
for a transition commits in one transaction; chain gateway calls happen
after it, and their references are stored when they return.
"""

from __future__ import annotations

import json
import time
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from conduit_core.chains.base import is_zero_ref
from conduit_core.engine.ledger import EscrowLedger
from conduit_core.engine.network import ActivityRecorder, ConnectionRecorder
from conduit_core.engine.reputation import ReputationAggregator
from conduit_core.logger import get_logger
from conduit_core.models import (
    ActivityType,
    AgentStatus,
    Escrow,
    EscrowStatus,
    Task,
    TaskStatus,
    to_decimal,
)
from conduit_core.storage.database import Database, now_iso

log = get_logger("tasks")


class TaskCoordinator:
    """Creates, dispatches and resolves tasks."""

    def __init__(
        self,
        db: Database,
        ledger: EscrowLedger,
        reputation: ReputationAggregator,
        connections: ConnectionRecorder,
        activity: ActivityRecorder,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.reputation = reputation
        self.connections = connections
        self.activity = activity

    def create_task(
        self,
        title: str,
        requirements: list[str],
        requester_agent_id: str,
        escrow_amount: Decimal | str | int | None = None,
        description: str | None = None,
    ) -> Task | None:
        """
        Create a pending task, locking escrow from the requester if an amount is given.

        Returns None if the requester does not exist.

        Raises:
            ValueError: negative or malformed escrow amount
        """
        amount = to_decimal(escrow_amount) if escrow_amount is not None else None
        if amount is not None and amount < 0:
            raise ValueError(f"escrow amount must not be negative, got {amount}")
        if not self.db.execute("SELECT 1 FROM agents WHERE id = ?", (requester_agent_id,)):
            return None

        task_id = f"task-{uuid.uuid4().hex[:8]}"
        self.db.execute_insert(
            """
            INSERT INTO tasks (
                id, title, description, requirements, status,
                requester_agent_id, escrow_amount, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task_id,
                title,
                description,
                json.dumps(list(requirements)),
                TaskStatus.PENDING.value,
                requester_agent_id,
                str(amount) if amount else None,
                now_iso(),
            ),
        )
        log.info(f'created task "{title}"', extra={"task_id": task_id, "agent_id": requester_agent_id})

        if amount:
            self.ledger.create_escrow(task_id, requester_agent_id, amount)

        return self.get_task(task_id)

    def dispatch_task(self, task_id: str, agent_id: str) -> Task | None:
        """Assign a pending task. None if the task is missing or not pending, or the agent is missing."""
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None or row["status"] != TaskStatus.PENDING:
                return None
            if conn.execute("SELECT 1 FROM agents WHERE id = ?", (agent_id,)).fetchone() is None:
                return None

            cursor = conn.execute(
                """
                UPDATE tasks SET status = ?, assigned_agent_id = ?, dispatched_at = ?
                WHERE id = ? AND status = ?
                """,
                (TaskStatus.DISPATCHED.value, agent_id, now_iso(), task_id, TaskStatus.PENDING.value),
            )
            if cursor.rowcount != 1:
                return None

            self.ledger.backfill_payee(conn, task_id, agent_id)
            conn.execute(
                "UPDATE agents SET status = ?, updated_at = ? WHERE id = ?",
                (AgentStatus.PROCESSING.value, now_iso(), agent_id),
            )
            requester = row["requester_agent_id"]
            connection = self.connections.bump(conn, requester, agent_id)
            self.activity.append(
                conn,
                f'[ROUTING] Task "{row["title"]}" dispatched: {requester} → {agent_id}',
                ActivityType.HIRED,
                connection_id=connection.id,
                task_id=task_id,
            )

        log.info("dispatched", extra={"task_id": task_id, "agent_id": agent_id})
        return self.get_task(task_id)

    def complete_task(
        self,
        task_id: str,
        result: str | None = None,
        attestation_score: float | None = None,
    ) -> Task | None:
        """
        Complete a dispatched task, rate the assignee and release its escrow.

        Returns None if the task is missing or not dispatched.

        Raises:
            ValueError: attestation score outside [0.0, 1.0]
        """
        if attestation_score is not None and not 0.0 <= float(attestation_score) <= 1.0:
            raise ValueError(f"attestation score must be in [0.0, 1.0], got {attestation_score}")

        resolved = self._resolve(task_id, TaskStatus.COMPLETED, result, EscrowStatus.RELEASED)
        if resolved is None:
            return None
        task, escrow = resolved
        requester, assignee = task.requester_agent_id, task.assigned_agent_id
        assert assignee is not None

        if attestation_score is not None:
            self.reputation.record_attestation(
                assignee, requester, float(attestation_score), task_id=task_id
            )
            connection = self.connections.find(requester, assignee)
            self.activity.record(
                f"[ATTEST] Trust attestation logged: {requester} rated {assignee} ({attestation_score})",
                ActivityType.TRUST,
                connection_id=connection.id if connection else None,
                task_id=task_id,
            )

        if escrow is not None:
            escrow = self._settle(task_id, escrow)
            connection = self.connections.find(requester, assignee)
            self.activity.record(
                f"[SETTLEMENT] {escrow.amount} USDC settled: {requester} → {assignee}"
                + _tx_suffix(escrow),
                ActivityType.PAYMENT,
                connection_id=connection.id if connection else None,
                task_id=task_id,
            )

        log.info("completed", extra={"task_id": task_id, "agent_id": assignee})
        return self.get_task(task_id)

    def fail_task(self, task_id: str, reason: str | None = None) -> Task | None:
        """
        Fail a dispatched task and refund its escrow to the requester.

        This is the explicit failure signal; callers decide when a task has
        failed (rejection, operator action, or ``expire_stale_tasks``).
        Returns None if the task is missing or not dispatched.
        """
        resolved = self._resolve(task_id, TaskStatus.FAILED, reason, EscrowStatus.REFUNDED)
        if resolved is None:
            return None
        task, escrow = resolved

        if escrow is not None:
            escrow = self._settle(task_id, escrow)
            connection = self.connections.find(task.requester_agent_id, task.assigned_agent_id or "")
            self.activity.record(
                f'[REFUND] {escrow.amount} USDC returned to {task.requester_agent_id}: task "{task.title}" failed'
                + _tx_suffix(escrow),
                ActivityType.PAYMENT,
                connection_id=connection.id if connection else None,
                task_id=task_id,
            )

        log.warning(
            f"failed: {reason or 'no reason given'}",
            extra={"task_id": task_id, "agent_id": task.assigned_agent_id},
        )
        return self.get_task(task_id)

    def expire_stale_tasks(self, max_age_seconds: float) -> list[Task]:
        """Fail every task dispatched longer ago than ``max_age_seconds``."""
        cutoff = datetime.fromtimestamp(time.time() - max_age_seconds).isoformat()
        rows = self.db.execute(
            "SELECT id FROM tasks WHERE status = ? AND dispatched_at < ?",
            (TaskStatus.DISPATCHED.value, cutoff),
        )
        expired = []
        for row in rows:
            task = self.fail_task(row["id"], reason=f"expired after {max_age_seconds:g}s")
            if task is not None:
                expired.append(task)
        return expired

    def _resolve(
        self,
        task_id: str,
        outcome: TaskStatus,
        result: str | None,
        escrow_outcome: EscrowStatus,
    ) -> tuple[Task, Escrow | None] | None:
        """Move a dispatched task to its terminal state, idle the assignee and resolve its escrow."""
        with self.db.transaction() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None or row["status"] != TaskStatus.DISPATCHED:
                return None

            completed_at = now_iso()
            cursor = conn.execute(
                """
                UPDATE tasks SET status = ?, result = ?, completed_at = ?
                WHERE id = ? AND status = ?
                """,
                (outcome.value, result, completed_at, task_id, TaskStatus.DISPATCHED.value),
            )
            if cursor.rowcount != 1:
                return None

            conn.execute(
                "UPDATE agents SET status = ?, updated_at = ? WHERE id = ?",
                (AgentStatus.IDLE.value, now_iso(), row["assigned_agent_id"]),
            )

            escrow = None
            escrow_id = self.ledger.locked_escrow_id(conn, task_id)
            if escrow_id is not None:
                escrow = self.ledger.resolve(conn, escrow_id, escrow_outcome)

        task = self._row_to_task(row)
        task.status = outcome.value
        task.result = result
        task.completed_at = completed_at
        return task, escrow

    def _settle(self, task_id: str, escrow: Escrow) -> Escrow:
        escrow = self.ledger.settle(escrow)
        if not is_zero_ref(escrow.settle_tx_ref):
            self.db.execute(
                "UPDATE tasks SET chain_tx_ref = ? WHERE id = ?", (escrow.settle_tx_ref, task_id)
            )
        return escrow

    def get_task(self, task_id: str) -> Task | None:
        rows = self.db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
        return self._row_to_task(rows[0]) if rows else None

    def list_tasks(self, status: str | None = None) -> list[Task]:
        if status:
            rows = self.db.execute(
                "SELECT * FROM tasks WHERE status = ? ORDER BY created_at DESC",
                (TaskStatus(status).value,),
            )
        else:
            rows = self.db.execute("SELECT * FROM tasks ORDER BY created_at DESC")
        return [self._row_to_task(row) for row in rows]

    def _row_to_task(self, row: Any) -> Task:
        return Task(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            requirements=json.loads(row["requirements"]) if row["requirements"] else [],
            status=row["status"],
            requester_agent_id=row["requester_agent_id"],
            assigned_agent_id=row["assigned_agent_id"],
            escrow_amount=Decimal(row["escrow_amount"]) if row["escrow_amount"] else None,
            result=row["result"],
            created_at=row["created_at"],
            dispatched_at=row["dispatched_at"],
            completed_at=row["completed_at"],
            chain_tx_ref=row["chain_tx_ref"],
        )


def _tx_suffix(escrow: Escrow) -> str:
    if is_zero_ref(escrow.settle_tx_ref):
        return ""
    return f" ({escrow.chain} tx: {escrow.settle_tx_ref})"
