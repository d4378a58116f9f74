"""Tests for connection bandwidth and the activity log."""

from __future__ import annotations

import pytest

from conduit_core.engine import Conduit
from conduit_core.models import Agent


class TestConnections:
    def test_first_interaction_creates_default(
        self, conduit: Conduit, requester: Agent, executor: Agent
    ) -> None:
        connection = conduit.connections.create_or_bump(requester.id, executor.id)

        assert connection.id.startswith("conn-")
        assert connection.bandwidth == 0.5

    def test_pair_is_unordered(self, conduit: Conduit, requester: Agent, executor: Agent) -> None:
        first = conduit.connections.create_or_bump(requester.id, executor.id)
        second = conduit.connections.create_or_bump(executor.id, requester.id)

        assert second.id == first.id
        assert second.bandwidth == 0.55
        assert len(conduit.connections.list()) == 1

    def test_bandwidth_caps_at_one(
        self, conduit: Conduit, requester: Agent, executor: Agent
    ) -> None:
        for _ in range(20):
            connection = conduit.connections.create_or_bump(requester.id, executor.id)

        assert connection.bandwidth == 1.0
        stored = conduit.connections.find(executor.id, requester.id)
        assert stored is not None
        assert stored.bandwidth == 1.0

    def test_list_by_agent(self, conduit: Conduit, requester: Agent, executor: Agent) -> None:
        other = conduit.registry.register_agent("settler", [], agent_id="agent-other").agent
        conduit.connections.create_or_bump(requester.id, executor.id)
        conduit.connections.create_or_bump(other.id, executor.id)

        assert len(conduit.connections.list(executor.id)) == 2
        assert len(conduit.connections.list(requester.id)) == 1


class TestActivity:
    def test_newest_first(self, conduit: Conduit) -> None:
        conduit.activity.record("first", "hired")
        conduit.activity.record("second", "payment")
        conduit.activity.record("third", "trust")

        events = conduit.activity.list()

        assert [e.message for e in events] == ["third", "second", "first"]
        assert [e.message for e in conduit.activity.list(limit=1)] == ["third"]
        assert [e.message for e in conduit.activity.list(type="payment")] == ["second"]

    def test_unknown_type_rejected(self, conduit: Conduit) -> None:
        with pytest.raises(ValueError):
            conduit.activity.record("oops", "gossip")
        assert conduit.activity.list() == []
