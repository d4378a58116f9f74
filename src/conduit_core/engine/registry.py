"""Agent Registry - marketplace participants, their status and balances."""

from __future__ import annotations

import json
import sqlite3
import uuid
from decimal import Decimal
from typing import Any

from conduit_core.chains.base import is_zero_ref
from conduit_core.chains.factory import ChainGateway
from conduit_core.logger import get_logger
from conduit_core.models import (
    Agent,
    AgentRole,
    AgentStatus,
    ChainName,
    RegistrationResult,
    to_decimal,
)
from conduit_core.storage.database import Database, now_iso

log = get_logger("registry")


class AgentRegistry:
    """
    Registers agents and keeps their status and settlement balance.

    Registration has best-effort side effects on the chain gateway (identity
    token, gas funding, backend registration). Their failures become
    warnings on the result; the local record is created regardless.
    """

    GAS_FUNDING_AMOUNT = "0.01"

    def __init__(self, db: Database, gateway: ChainGateway) -> None:
        self.db = db
        self.gateway = gateway

    def register_agent(
        self,
        role: str,
        capabilities: list[str],
        agent_id: str | None = None,
        deployed_chain: str = ChainName.BASE,
        wallet_address: str | None = None,
        encrypted_key: str | None = None,
        name: str | None = None,
        initial_balance: Decimal | str | int = "0",
    ) -> RegistrationResult:
        """
        Register a new agent.

        Raises:
            ValueError: unknown role or chain, negative balance, or duplicate id
        """
        role = AgentRole(role).value
        deployed_chain = ChainName(deployed_chain).value
        balance = to_decimal(initial_balance)
        if balance < 0:
            raise ValueError(f"initial balance must not be negative, got {balance}")

        agent_id = agent_id or f"agent-{uuid.uuid4().hex[:8]}"
        now = now_iso()

        try:
            self.db.execute_insert(
                """
                INSERT INTO agents (
                    id, name, role, capabilities, attestation_score, settlement_balance,
                    status, deployed_chain, wallet_address, encrypted_key, created_at, updated_at
                ) VALUES (?, ?, ?, ?, 0.5, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    agent_id,
                    name,
                    role,
                    json.dumps(list(capabilities)),
                    str(balance),
                    AgentStatus.IDLE.value,
                    deployed_chain,
                    wallet_address,
                    encrypted_key,
                    now,
                    now,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"agent {agent_id} already exists") from exc

        log.info(f"registered {role} agent", extra={"agent_id": agent_id})
        warnings = self._run_side_effects(
            agent_id, role, capabilities, deployed_chain, wallet_address, encrypted_key, name
        )

        agent = self.get_agent(agent_id)
        assert agent is not None
        return RegistrationResult(agent=agent, warnings=warnings)

    def _run_side_effects(
        self,
        agent_id: str,
        role: str,
        capabilities: list[str],
        deployed_chain: str,
        wallet_address: str | None,
        encrypted_key: str | None,
        name: str | None,
    ) -> list[str]:
        warnings: list[str] = []

        mint = self.gateway.mint_identity_token(
            agent_id, {"role": role, "capabilities": list(capabilities)}
        )
        if is_zero_ref(mint.tx_ref):
            warnings.append("identity token mint failed; no token id stored")
        else:
            self._update(agent_id, identity_token_id=mint.token_id)

        if wallet_address:
            funded = self.gateway.registry.fund_wallet(
                agent_id, wallet_address, self.GAS_FUNDING_AMOUNT
            )
            if is_zero_ref(funded):
                warnings.append(f"gas funding for {wallet_address} failed")

        if encrypted_key:
            tx_ref = self.gateway.registry.register_agent(
                agent_id, encrypted_key, name or agent_id, deployed_chain
            )
            if is_zero_ref(tx_ref):
                warnings.append("backend registration failed; agent is registered locally only")
            else:
                self._update(agent_id, backend_registered=1, backend_tx_ref=tx_ref)

        for warning in warnings:
            log.warning(warning, extra={"agent_id": agent_id})
        return warnings

    def _update(self, agent_id: str, **fields: Any) -> None:
        assignments = ", ".join(f"{column} = ?" for column in fields)
        self.db.execute(
            f"UPDATE agents SET {assignments}, updated_at = ? WHERE id = ?",
            (*fields.values(), now_iso(), agent_id),
        )

    def get_agent(self, agent_id: str) -> Agent | None:
        rows = self.db.execute("SELECT * FROM agents WHERE id = ?", (agent_id,))
        if rows:
            return self._row_to_agent(rows[0])
        return None

    def list_agents(self) -> list[Agent]:
        rows = self.db.execute("SELECT * FROM agents ORDER BY created_at ASC")
        return [self._row_to_agent(row) for row in rows]

    def discover_agents(
        self,
        capabilities: list[str] | None = None,
        role: str | None = None,
        min_reputation: float | None = None,
    ) -> list[Agent]:
        """Filter agents; an agent matches the capability filter if it has ANY of them."""
        if role is not None:
            role = AgentRole(role).value
        wanted = set(capabilities or [])

        matches = []
        for agent in self.list_agents():
            if role and agent.role != role:
                continue
            if min_reputation is not None and agent.attestation_score < min_reputation:
                continue
            if wanted and not wanted.intersection(agent.capabilities):
                continue
            matches.append(agent)
        return matches

    def update_agent_status(self, agent_id: str, status: str) -> Agent | None:
        status = AgentStatus(status).value
        with self.db.connect() as conn:
            conn.execute(
                "UPDATE agents SET status = ?, updated_at = ? WHERE id = ?",
                (status, now_iso(), agent_id),
            )
        return self.get_agent(agent_id)

    def credit_balance(self, agent_id: str, amount: Decimal | str | int) -> Agent | None:
        """Operator top-up of an agent's settlement balance."""
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValueError(f"credit amount must be positive, got {amount}")
        with self.db.transaction() as conn:
            balance = self.db.adjust_balance(conn, agent_id, amount)
        if balance is None:
            return None
        log.info(f"credited {amount}", extra={"agent_id": agent_id})
        return self.get_agent(agent_id)

    def deregister_agent(self, agent_id: str) -> tuple[Agent, str] | None:
        """
        Remove the agent from the backend registry; the local record stays.

        Returns the updated agent and the gateway reference, or None if the
        agent does not exist or was never registered on the backend.
        """
        agent = self.get_agent(agent_id)
        if agent is None or not agent.backend_registered:
            return None
        tx_ref = self.gateway.registry.deregister(agent_id, agent.encrypted_key or "")
        if not is_zero_ref(tx_ref):
            self._update(agent_id, backend_registered=0, backend_tx_ref=tx_ref)
        agent = self.get_agent(agent_id)
        assert agent is not None
        return agent, tx_ref

    def _row_to_agent(self, row: Any) -> Agent:
        return Agent(
            id=row["id"],
            name=row["name"],
            role=row["role"],
            capabilities=json.loads(row["capabilities"]) if row["capabilities"] else [],
            attestation_score=row["attestation_score"],
            settlement_balance=Decimal(row["settlement_balance"]),
            status=row["status"],
            deployed_chain=row["deployed_chain"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            identity_token_id=row["identity_token_id"],
            wallet_address=row["wallet_address"],
            encrypted_key=row["encrypted_key"],
            backend_registered=bool(row["backend_registered"]),
            backend_tx_ref=row["backend_tx_ref"],
        )
