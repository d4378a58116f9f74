"""Coordination engine: registry, escrow ledger, reputation, task state machine."""

from conduit_core.engine.container import Conduit
from conduit_core.engine.ledger import EscrowLedger
from conduit_core.engine.network import ActivityRecorder, ConnectionRecorder
from conduit_core.engine.registry import AgentRegistry
from conduit_core.engine.reputation import ReputationAggregator
from conduit_core.engine.tasks import TaskCoordinator
from conduit_core.engine.vitals import compute_vitals

__all__ = [
    "ActivityRecorder",
    "AgentRegistry",
    "Conduit",
    "ConnectionRecorder",
    "EscrowLedger",
    "ReputationAggregator",
    "TaskCoordinator",
    "compute_vitals",
]
