"""Tests for the agent registry."""

from __future__ import annotations

from decimal import Decimal

import pytest

from conduit_core.engine import Conduit
from conduit_core.models import AgentStatus


class TestRegister:
    def test_register_defaults(self, conduit: Conduit) -> None:
        result = conduit.registry.register_agent("executor", ["summarize"])

        agent = result.agent
        assert agent.id.startswith("agent-")
        assert agent.status == AgentStatus.IDLE
        assert agent.attestation_score == 0.5
        assert agent.settlement_balance == Decimal("0")
        assert agent.deployed_chain == "base"
        assert agent.identity_token_id is not None
        assert agent.identity_token_id.startswith("inft-")
        assert result.warnings == []

    def test_register_with_wallet_and_key(self, conduit: Conduit) -> None:
        result = conduit.registry.register_agent(
            "settler",
            [],
            agent_id="agent-wallet",
            deployed_chain="zerog",
            wallet_address="0x000000000000000000000000000000000000dEaD",
            encrypted_key="ciphertext",
            name="Settler",
        )

        assert result.agent.backend_registered
        assert result.agent.backend_tx_ref is not None
        methods = {entry.method for entry in conduit.gateway.txlog.list(agent_id="agent-wallet")}
        assert methods == {"mint_identity_token", "fund_wallet", "register_agent"}

    def test_register_rejects_bad_input(self, conduit: Conduit) -> None:
        with pytest.raises(ValueError):
            conduit.registry.register_agent("janitor", [])
        with pytest.raises(ValueError):
            conduit.registry.register_agent("executor", [], deployed_chain="solana")
        with pytest.raises(ValueError):
            conduit.registry.register_agent("executor", [], initial_balance="-1")

    def test_register_duplicate_id(self, conduit: Conduit) -> None:
        conduit.registry.register_agent("executor", [], agent_id="agent-dup")
        with pytest.raises(ValueError):
            conduit.registry.register_agent("router", [], agent_id="agent-dup")


class TestQueries:
    def test_discover_matches_any_capability(self, conduit: Conduit) -> None:
        conduit.registry.register_agent("executor", ["python", "testing"], agent_id="agent-a")
        conduit.registry.register_agent("executor", ["design"], agent_id="agent-b")
        conduit.registry.register_agent("router", ["testing"], agent_id="agent-c")

        found = conduit.registry.discover_agents(["testing", "rust"])
        assert {a.id for a in found} == {"agent-a", "agent-c"}

        executors = conduit.registry.discover_agents(["testing"], role="executor")
        assert [a.id for a in executors] == ["agent-a"]

    def test_discover_min_reputation(self, conduit: Conduit) -> None:
        conduit.registry.register_agent("executor", [], agent_id="agent-good")
        conduit.registry.register_agent("executor", [], agent_id="agent-bad")
        conduit.reputation.record_attestation("agent-good", "agent-x", 0.9)
        conduit.reputation.record_attestation("agent-bad", "agent-x", 0.1)

        found = conduit.registry.discover_agents(min_reputation=0.5)
        assert [a.id for a in found] == ["agent-good"]

    def test_update_status(self, conduit: Conduit) -> None:
        conduit.registry.register_agent("executor", [], agent_id="agent-a")

        agent = conduit.registry.update_agent_status("agent-a", "dormant")
        assert agent is not None
        assert agent.status == AgentStatus.DORMANT
        assert conduit.registry.update_agent_status("agent-missing", "idle") is None
        with pytest.raises(ValueError):
            conduit.registry.update_agent_status("agent-a", "asleep")

    def test_credit_balance(self, conduit: Conduit) -> None:
        conduit.registry.register_agent("executor", [], agent_id="agent-a", initial_balance="1.5")

        agent = conduit.registry.credit_balance("agent-a", "2.25")
        assert agent is not None
        assert agent.settlement_balance == Decimal("3.75")
        assert conduit.registry.credit_balance("agent-missing", "1") is None
        with pytest.raises(ValueError):
            conduit.registry.credit_balance("agent-a", "0")

    def test_deregister(self, conduit: Conduit) -> None:
        conduit.registry.register_agent("executor", [], agent_id="agent-local")
        conduit.registry.register_agent(
            "executor", [], agent_id="agent-onchain", encrypted_key="ciphertext"
        )

        assert conduit.registry.deregister_agent("agent-local") is None
        result = conduit.registry.deregister_agent("agent-onchain")
        assert result is not None
        agent, tx_ref = result
        assert not agent.backend_registered
        assert agent.backend_tx_ref == tx_ref
