"""Network vitals: value locked, average trust, work in flight."""

from __future__ import annotations

from decimal import Decimal

from conduit_core.models import EscrowStatus, TaskStatus, Vitals
from conduit_core.storage.database import Database


def compute_vitals(db: Database) -> Vitals:
    """
    TVL is every agent balance plus every locked escrow. System attestation
    is the mean agent score rounded to two places; active processes counts
    dispatched tasks.
    """
    balances = db.execute("SELECT settlement_balance, attestation_score FROM agents")
    locked = db.execute(
        "SELECT amount FROM escrows WHERE status = ?", (EscrowStatus.LOCKED.value,)
    )
    dispatched = db.execute(
        "SELECT COUNT(*) AS cnt FROM tasks WHERE status = ?", (TaskStatus.DISPATCHED.value,)
    )

    total = sum((Decimal(row["settlement_balance"]) for row in balances), Decimal("0"))
    total += sum((Decimal(row["amount"]) for row in locked), Decimal("0"))

    scores = [row["attestation_score"] for row in balances]
    system_attestation = round(sum(scores) / len(scores), 2) if scores else 0.0

    return Vitals(
        total_value_locked=total,
        system_attestation=system_attestation,
        active_processes=dispatched[0]["cnt"],
    )
