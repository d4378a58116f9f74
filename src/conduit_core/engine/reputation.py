"""Reputation Aggregator - attestation history and the derived trust score."""

from __future__ import annotations

import json
import sqlite3
import uuid
from typing import Any

from conduit_core.chains.factory import ChainGateway
from conduit_core.logger import get_logger
from conduit_core.models import Attestation, Reputation
from conduit_core.storage.database import Database, now_iso

log = get_logger("reputation")

DEFAULT_SCORE = 0.5


class ReputationAggregator:
    """
    An agent's attestation_score is the mean of every score it has received,
    or 0.5 before its first attestation. Attestations are immutable.
    """

    def __init__(self, db: Database, gateway: ChainGateway) -> None:
        self.db = db
        self.gateway = gateway

    def record_attestation(
        self,
        agent_id: str,
        attester_id: str,
        score: float,
        task_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Attestation | None:
        """
        Record a score for an agent and recompute its reputation.

        The gateway receipt is obtained first so the row is written once,
        complete. Returns None when the agent, or the task if one is given,
        does not exist.

        Raises:
            ValueError: score outside [0.0, 1.0]
        """
        score = float(score)
        if not 0.0 <= score <= 1.0:
            raise ValueError(f"score must be in [0.0, 1.0], got {score}")
        if not self.db.execute("SELECT 1 FROM agents WHERE id = ?", (agent_id,)):
            return None
        if task_id is not None and not self.db.execute(
            "SELECT 1 FROM tasks WHERE id = ?", (task_id,)
        ):
            return None

        receipt = self.gateway.record_attestation(agent_id, attester_id, score, metadata)
        attestation = Attestation(
            id=f"att-{uuid.uuid4().hex[:8]}",
            agent_id=agent_id,
            attester_id=attester_id,
            score=score,
            created_at=now_iso(),
            task_id=task_id,
            metadata=metadata,
            chain=self.gateway.attestation.backend,
            tx_ref=receipt.tx_ref,
            topic_id=receipt.topic_id,
        )

        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO attestations (
                    id, agent_id, attester_id, task_id, score, metadata,
                    chain, tx_ref, topic_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    attestation.id,
                    attestation.agent_id,
                    attestation.attester_id,
                    attestation.task_id,
                    attestation.score,
                    json.dumps(metadata) if metadata is not None else None,
                    attestation.chain,
                    attestation.tx_ref,
                    attestation.topic_id,
                    attestation.created_at,
                ),
            )
            new_score = self.recompute(conn, agent_id)

        log.info(
            f"attestation {score} from {attester_id}, reputation now {new_score:.4f}",
            extra={"agent_id": agent_id, "task_id": task_id, "tx_ref": receipt.tx_ref},
        )
        return attestation

    @staticmethod
    def recompute(conn: sqlite3.Connection, agent_id: str) -> float:
        row = conn.execute(
            "SELECT AVG(score) AS avg_score FROM attestations WHERE agent_id = ?", (agent_id,)
        ).fetchone()
        score = row["avg_score"] if row["avg_score"] is not None else DEFAULT_SCORE
        conn.execute(
            "UPDATE agents SET attestation_score = ?, updated_at = ? WHERE id = ?",
            (score, now_iso(), agent_id),
        )
        return score

    def get_agent_attestations(self, agent_id: str) -> list[Attestation]:
        rows = self.db.execute(
            "SELECT * FROM attestations WHERE agent_id = ? ORDER BY created_at DESC", (agent_id,)
        )
        return [self._row_to_attestation(row) for row in rows]

    def get_agent_reputation(self, agent_id: str) -> Reputation | None:
        if not self.db.execute("SELECT 1 FROM agents WHERE id = ?", (agent_id,)):
            return None
        attestations = self.get_agent_attestations(agent_id)
        if attestations:
            score = sum(a.score for a in attestations) / len(attestations)
        else:
            score = DEFAULT_SCORE
        return Reputation(agent_id=agent_id, score=score, attestations=attestations)

    def _row_to_attestation(self, row: Any) -> Attestation:
        return Attestation(
            id=row["id"],
            agent_id=row["agent_id"],
            attester_id=row["attester_id"],
            score=row["score"],
            created_at=row["created_at"],
            task_id=row["task_id"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            chain=row["chain"],
            tx_ref=row["tx_ref"],
            topic_id=row["topic_id"],
        )
