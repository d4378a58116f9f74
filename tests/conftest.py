"""Shared fixtures: a stub-mode Conduit container in a temporary data directory."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from conduit_core.config import ConduitConfig
from conduit_core.engine import Conduit
from conduit_core.models import Agent


@pytest.fixture
def config(tmp_path: Path) -> ConduitConfig:
    return ConduitConfig(data_dir=tmp_path / "conduit", stub_delay=0)


@pytest.fixture
def conduit(config: ConduitConfig) -> Generator[Conduit, None, None]:
    container = Conduit.from_config(config)
    yield container
    container.close()


@pytest.fixture
def requester(conduit: Conduit) -> Agent:
    result = conduit.registry.register_agent(
        "router", ["routing"], agent_id="agent-req", initial_balance="100"
    )
    return result.agent


@pytest.fixture
def executor(conduit: Conduit) -> Agent:
    result = conduit.registry.register_agent(
        "executor", ["code-review", "testing"], agent_id="agent-exe"
    )
    return result.agent
