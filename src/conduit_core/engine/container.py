"""Service container wiring the store, gateway and engine components together."""

from __future__ import annotations

from dataclasses import dataclass

from conduit_core.chains.factory import ChainGateway, build_gateway
from conduit_core.chains.txlog import TransactionLog
from conduit_core.config import ConduitConfig
from conduit_core.engine.ledger import EscrowLedger
from conduit_core.engine.network import ActivityRecorder, ConnectionRecorder
from conduit_core.engine.registry import AgentRegistry
from conduit_core.engine.reputation import ReputationAggregator
from conduit_core.engine.tasks import TaskCoordinator
from conduit_core.engine.vitals import compute_vitals
from conduit_core.models import Vitals
from conduit_core.storage.database import Database


@dataclass
class Conduit:
    """
    Every component shares one Database and one ChainGateway, passed in at
    construction. The entry point that builds the container owns its lifetime.
    """

    config: ConduitConfig
    db: Database
    gateway: ChainGateway
    registry: AgentRegistry
    ledger: EscrowLedger
    reputation: ReputationAggregator
    connections: ConnectionRecorder
    activity: ActivityRecorder
    tasks: TaskCoordinator

    @classmethod
    def from_config(cls, config: ConduitConfig | None = None) -> Conduit:
        config = config or ConduitConfig.from_env()
        db = Database(config.data_dir)
        db.ensure_tables()
        gateway = build_gateway(config, TransactionLog(db))

        ledger = EscrowLedger(db, gateway)
        reputation = ReputationAggregator(db, gateway)
        connections = ConnectionRecorder(db)
        activity = ActivityRecorder(db)
        return cls(
            config=config,
            db=db,
            gateway=gateway,
            registry=AgentRegistry(db, gateway),
            ledger=ledger,
            reputation=reputation,
            connections=connections,
            activity=activity,
            tasks=TaskCoordinator(db, ledger, reputation, connections, activity),
        )

    def vitals(self) -> Vitals:
        return compute_vitals(self.db)

    def close(self) -> None:
        self.gateway.close()
