"""
Gateway assembly.

For each capability the configured backend is asked whether it has what a
live call needs (a signing key and valid contract addresses). If so the
live adapter is built, otherwise the stub. A capability listed in
``require_live`` refuses to fall back.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from web3 import Web3

from conduit_core.chains.base import (
    AttestationReceipt,
    AttestationService,
    ChainAdapter,
    EscrowService,
    IdentityProof,
    IdentityService,
    IdentityTokenService,
    MintReceipt,
    PaymentGateway,
    PaymentReceipt,
    RegistryService,
    ScheduleService,
)
from conduit_core.chains.evm import EvmAttestation, EvmClient, EvmEscrow
from conduit_core.chains.kite import KiteIdentity, KitePayment
from conduit_core.chains.stub import STUBS
from conduit_core.chains.txlog import TransactionLog
from conduit_core.chains.zerog import AgentNFTMinter, ConduitRegistry
from conduit_core.config import CAPABILITIES, BackendSettings, ConduitConfig
from conduit_core.exceptions import ConfigurationError
from conduit_core.logger import get_logger

log = get_logger("chains.factory")

EVM_BACKENDS = ("base", "hedera", "zerog")

# Addresses a live adapter needs, per capability
_REQUIRED_ADDRESSES: dict[str, tuple[str, ...]] = {
    "escrow": ("escrow",),
    "attestation": ("attestation",),
    "identity_token": ("identity_token",),
    "registry": ("registry",),
    "payment": ("payment", "asset"),
    "identity": (),
}

# Capabilities served by contract calls over JSON-RPC
_RPC_CAPABILITIES = frozenset({"escrow", "attestation", "identity_token", "registry"})

LiveFactory = Callable[[str, TransactionLog, BackendSettings, ConduitConfig], ChainAdapter]


def _evm_client(settings: BackendSettings, config: ConduitConfig) -> EvmClient:
    return EvmClient(settings.rpc_url, settings.private_key, config.confirmation_timeout)


def _evm_escrow(backend, txlog, settings, config):
    return EvmEscrow(backend, txlog, _evm_client(settings, config), settings.address_for("escrow"))


def _evm_attestation(backend, txlog, settings, config):
    return EvmAttestation(
        backend, txlog, _evm_client(settings, config), settings.address_for("attestation")
    )


def _zerog_minter(backend, txlog, settings, config):
    return AgentNFTMinter(
        backend, txlog, _evm_client(settings, config), settings.address_for("identity_token")
    )


def _zerog_registry(backend, txlog, settings, config):
    return ConduitRegistry(
        backend,
        txlog,
        _evm_client(settings, config),
        settings.address_for("registry"),
        key_decryptor=config.key_decryptor,
    )


def _kite_payment(backend, txlog, settings, config):
    return KitePayment(
        backend,
        txlog,
        private_key=settings.private_key,
        pay_to=Web3.to_checksum_address(settings.address_for("payment")),
        asset_address=Web3.to_checksum_address(settings.address_for("asset")),
        network=settings.options.get("network", "kite-testnet"),
        facilitator_url=settings.options.get("facilitator_url", "https://facilitator.pieverse.io"),
        chain_id=int(settings.options.get("chain_id", "2410")),
    )


def _kite_identity(backend, txlog, settings, config):
    return KiteIdentity(
        backend, txlog, settings.private_key, network=settings.options.get("network", "kite-testnet")
    )


LIVE_FACTORIES: dict[tuple[str, str], LiveFactory] = {
    **{("escrow", backend): _evm_escrow for backend in EVM_BACKENDS},
    **{("attestation", backend): _evm_attestation for backend in EVM_BACKENDS},
    ("identity_token", "zerog"): _zerog_minter,
    ("registry", "zerog"): _zerog_registry,
    ("payment", "kite"): _kite_payment,
    ("identity", "kite"): _kite_identity,
}


def _valid_key(private_key: str) -> bool:
    if not private_key:
        return False
    try:
        Account.from_key(private_key)
    except ValueError:
        return False
    return True


def is_configured(capability: str, settings: BackendSettings) -> bool:
    """
    True when a backend can serve the capability live.

    A valid signing key and contract addresses are always required; contract
    capabilities also need an RPC endpoint.
    """
    if not _valid_key(settings.private_key):
        return False
    if capability in _RPC_CAPABILITIES and not settings.rpc_url.strip():
        return False
    return all(
        Web3.is_address(settings.address_for(name))
        for name in _REQUIRED_ADDRESSES.get(capability, ())
    )


@dataclass
class ChainGateway:
    """
    One adapter per capability, each live or stub.

    Callers use the same methods regardless of mode; a zero reference is
    the only signal that a live call did not go through.
    """

    escrow: EscrowService
    attestation: AttestationService
    payment: PaymentGateway
    identity: IdentityService
    identity_token: IdentityTokenService
    scheduling: ScheduleService
    registry: RegistryService
    txlog: TransactionLog

    def adapter(self, capability: str) -> ChainAdapter:
        if capability not in CAPABILITIES:
            raise ValueError(f"unknown capability: {capability}")
        return getattr(self, capability)

    def close(self) -> None:
        """Release network clients held by live adapters."""
        for capability in CAPABILITIES:
            close = getattr(self.adapter(capability), "close", None)
            if close is not None:
                close()

    def modes(self) -> dict[str, dict[str, str]]:
        return {
            capability: {
                "backend": self.adapter(capability).backend,
                "mode": str(self.adapter(capability).mode),
            }
            for capability in CAPABILITIES
        }

    def lock_funds(self, task_id: str, payer_agent_id: str, amount: str) -> str:
        return self.escrow.lock_funds(task_id, payer_agent_id, amount)

    def release_funds(self, escrow_id: str, payee_agent_id: str, amount: str) -> str:
        return self.escrow.release_funds(escrow_id, payee_agent_id, amount)

    def refund_funds(self, escrow_id: str, payer_agent_id: str, amount: str) -> str:
        return self.escrow.refund_funds(escrow_id, payer_agent_id, amount)

    def record_attestation(
        self,
        agent_id: str,
        attester_id: str,
        score: float,
        metadata: dict[str, Any] | None = None,
    ) -> AttestationReceipt:
        return self.attestation.record_attestation(agent_id, attester_id, score, metadata)

    def process_payment(
        self, from_id: str, to: str, amount: str, memo: str | None = None
    ) -> PaymentReceipt:
        return self.payment.process_payment(from_id, to, amount, memo)

    def verify_identity(self, agent_id: str) -> IdentityProof:
        return self.identity.verify_identity(agent_id)

    def mint_identity_token(self, agent_id: str, metadata: dict[str, Any]) -> MintReceipt:
        return self.identity_token.mint_identity_token(agent_id, metadata)

    def schedule_recurring(
        self, task_id: str, interval_seconds: int, payload: dict[str, Any]
    ) -> str:
        return self.scheduling.schedule_recurring(task_id, interval_seconds, payload)


def build_adapter(capability: str, config: ConduitConfig, txlog: TransactionLog) -> ChainAdapter:
    backend = config.backend_for(capability)
    settings = config.settings_for(backend)
    live_factory = LIVE_FACTORIES.get((capability, backend))

    if live_factory is not None and is_configured(capability, settings):
        log.info(
            f"{capability}: real on-chain calls enabled on {backend}",
            extra={"backend": backend},
        )
        return live_factory(backend, txlog, settings, config)

    if capability in config.require_live:
        raise ConfigurationError(
            f"{capability} must run live but backend {backend!r} has no usable credentials"
        )
    log.info(f"{capability}: {backend} not configured, using stub mode", extra={"backend": backend})
    return STUBS[capability](backend, txlog, stub_delay=config.stub_delay)


def build_gateway(config: ConduitConfig, txlog: TransactionLog) -> ChainGateway:
    """Resolve every capability once; raises ConfigurationError only under ``require_live``."""
    unknown = set(config.require_live) - set(CAPABILITIES)
    if unknown:
        raise ConfigurationError(f"unknown capabilities in require_live: {sorted(unknown)}")
    adapters = {capability: build_adapter(capability, config, txlog) for capability in CAPABILITIES}
    return ChainGateway(txlog=txlog, **adapters)
