"""Tests for the reputation aggregator."""

from __future__ import annotations

import pytest

from conduit_core.engine import Conduit
from conduit_core.models import Agent


class TestReputation:
    def test_default_score(self, conduit: Conduit, executor: Agent) -> None:
        reputation = conduit.reputation.get_agent_reputation(executor.id)

        assert reputation is not None
        assert reputation.score == 0.5
        assert reputation.attestations == []

    def test_score_is_mean_of_attestations(self, conduit: Conduit, executor: Agent) -> None:
        for score in (0.8, 0.6, 1.0):
            conduit.reputation.record_attestation(executor.id, "agent-reviewer", score)

        reputation = conduit.reputation.get_agent_reputation(executor.id)
        assert reputation is not None
        assert reputation.score == pytest.approx(0.8)
        assert len(reputation.attestations) == 3

        agent = conduit.registry.get_agent(executor.id)
        assert agent is not None
        assert agent.attestation_score == pytest.approx(0.8)

    def test_attestation_carries_receipt(self, conduit: Conduit, executor: Agent) -> None:
        attestation = conduit.reputation.record_attestation(
            executor.id, "agent-reviewer", 1.0, metadata={"note": "fast"}
        )

        assert attestation is not None
        assert attestation.chain == "hedera"
        assert attestation.tx_ref is not None
        assert attestation.topic_id is not None
        assert attestation.topic_id.startswith("0.0.")

        stored = conduit.reputation.get_agent_attestations(executor.id)
        assert stored[0].metadata == {"note": "fast"}

    @pytest.mark.parametrize("score", [-0.1, 1.01])
    def test_score_out_of_range(self, conduit: Conduit, executor: Agent, score: float) -> None:
        with pytest.raises(ValueError):
            conduit.reputation.record_attestation(executor.id, "agent-reviewer", score)
        assert conduit.reputation.get_agent_attestations(executor.id) == []

    def test_unknown_agent(self, conduit: Conduit) -> None:
        assert conduit.reputation.record_attestation("agent-missing", "agent-x", 0.5) is None
        assert conduit.reputation.get_agent_reputation("agent-missing") is None

    def test_unknown_task_writes_nothing(self, conduit: Conduit, executor: Agent) -> None:
        attestation = conduit.reputation.record_attestation(
            executor.id, "agent-reviewer", 0.7, task_id="task-missing"
        )

        assert attestation is None
        assert conduit.reputation.get_agent_attestations(executor.id) == []
        assert conduit.gateway.txlog.list(method="record_attestation") == []

    def test_attestation_linked_to_task(
        self, conduit: Conduit, requester: Agent, executor: Agent
    ) -> None:
        task = conduit.tasks.create_task("Audit", [], requester.id)
        assert task is not None

        attestation = conduit.reputation.record_attestation(
            executor.id, requester.id, 0.7, task_id=task.id
        )

        assert attestation is not None
        assert conduit.reputation.get_agent_attestations(executor.id)[0].task_id == task.id
