"""
Coordination Data Models

Entity records for the agent marketplace: agents, tasks, escrows,
attestations, connections, activity events and the chain transaction log.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any


class AgentRole(StrEnum):
    """Economic role an agent plays in the marketplace."""

    ROUTER = "router"
    EXECUTOR = "executor"
    SETTLER = "settler"


class AgentStatus(StrEnum):
    IDLE = "idle"
    PROCESSING = "processing"
    DORMANT = "dormant"


class ChainName(StrEnum):
    """Settlement backends an adapter can target."""

    BASE = "base"
    HEDERA = "hedera"
    ZEROG = "zerog"
    KITE = "kite"


class TaskStatus(StrEnum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    COMPLETED = "completed"
    FAILED = "failed"


class EscrowStatus(StrEnum):
    LOCKED = "locked"
    RELEASED = "released"
    REFUNDED = "refunded"


class ActivityType(StrEnum):
    HIRED = "hired"
    PAYMENT = "payment"
    TRUST = "trust"


class TxStatus(StrEnum):
    """Status of an entry in the append-only chain transaction log."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def to_decimal(value: Any) -> Decimal:
    """Parse an amount into a Decimal, rejecting floats' binary noise via str()."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"invalid amount: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"amount must be finite, got {value!r}")
    return result


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0.0, 1.0], got {value}")


@dataclass
class Agent:
    """Registered marketplace participant."""

    id: str
    role: str
    capabilities: list[str]
    attestation_score: float
    settlement_balance: Decimal
    status: str
    deployed_chain: str
    created_at: str
    updated_at: str
    name: str | None = None
    identity_token_id: str | None = None
    wallet_address: str | None = None
    encrypted_key: str | None = None
    backend_registered: bool = False
    backend_tx_ref: str | None = None

    def __post_init__(self) -> None:
        _check_unit_interval("attestation_score", self.attestation_score)


@dataclass
class Task:
    """Unit of requested work."""

    id: str
    title: str
    requirements: list[str]
    status: str
    requester_agent_id: str
    created_at: str
    description: str | None = None
    assigned_agent_id: str | None = None
    escrow_amount: Decimal | None = None
    result: str | None = None
    dispatched_at: str | None = None
    completed_at: str | None = None
    chain_tx_ref: str | None = None


@dataclass
class Escrow:
    """Funds locked against a task."""

    id: str
    task_id: str
    payer_agent_id: str
    amount: Decimal
    status: str
    created_at: str
    payee_agent_id: str | None = None
    chain: str | None = None
    tx_ref: str | None = None
    settle_tx_ref: str | None = None
    settled_at: str | None = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"amount must be positive, got {self.amount}")


@dataclass
class Attestation:
    """Scored review of an agent's work. Never mutated after insert."""

    id: str
    agent_id: str
    attester_id: str
    score: float
    created_at: str
    task_id: str | None = None
    metadata: dict[str, Any] | None = None
    chain: str | None = None
    tx_ref: str | None = None
    topic_id: str | None = None

    def __post_init__(self) -> None:
        _check_unit_interval("score", self.score)


@dataclass
class Connection:
    """Interaction affinity between an unordered pair of agents."""

    id: str
    source_agent_id: str
    target_agent_id: str
    bandwidth: float
    last_interaction_at: str

    def __post_init__(self) -> None:
        _check_unit_interval("bandwidth", self.bandwidth)


@dataclass
class ActivityEvent:
    id: str
    timestamp: str
    message: str
    type: str
    connection_id: str | None = None
    task_id: str | None = None


@dataclass
class ContractTxn:
    """Append-only audit row for one chain gateway call."""

    id: str
    agent_id: str
    method: str
    status: str
    created_at: str
    backend: str | None = None
    tx_ref: str | None = None
    params: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class RegistrationResult:
    """Registered agent plus warnings from best-effort side effects."""

    agent: Agent
    warnings: list[str] = field(default_factory=list)


@dataclass
class AgentBalance:
    agent_id: str
    balance: Decimal
    pending_escrow: Decimal


@dataclass
class Reputation:
    agent_id: str
    score: float
    attestations: list[Attestation]


@dataclass
class Vitals:
    """Network-wide health figures."""

    total_value_locked: Decimal
    system_attestation: float
    active_processes: int


def as_dict(record: Any) -> dict[str, Any]:
    """Dataclass to JSON-friendly dict, rendering Decimals as strings."""
    return _jsonable(asdict(record))


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value
