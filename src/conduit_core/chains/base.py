"""
Chain capability interfaces.

Each settlement capability (escrow, attestation, payment, identity,
identity token, scheduling, registry) is one abstract class. A backend
provides a live implementation, and every capability has a stub. Both
return the same shapes, so callers never branch on mode.
"""

from __future__ import annotations

import secrets
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

from conduit_core.chains.txlog import TransactionLog
from conduit_core.logger import get_logger
from conduit_core.models import TxStatus

ZERO_TX_REF = "0x0"

T = TypeVar("T")

log = get_logger("chains")


def is_zero_ref(tx_ref: str | None) -> bool:
    """True when a settlement call did not happen (failed live call or missing ref)."""
    return not tx_ref or tx_ref == ZERO_TX_REF


class ChainMode(StrEnum):
    LIVE = "live"
    STUB = "stub"


class ChainCallError(Exception):
    """Raised inside live adapters; always caught and turned into a zero reference."""


@dataclass(frozen=True)
class AttestationReceipt:
    tx_ref: str
    topic_id: str | None = None


@dataclass(frozen=True)
class PaymentReceipt:
    tx_ref: str
    payment_id: str


@dataclass(frozen=True)
class IdentityProof:
    verified: bool
    did: str | None = None


@dataclass(frozen=True)
class MintReceipt:
    token_id: str
    tx_ref: str


@dataclass(frozen=True)
class OnChainAgent:
    address: str
    exists: bool
    name: str
    chain: int
    price_per_minute: str
    reputation: int
    abilities_mask: str


@dataclass(frozen=True)
class OnChainJob:
    job_id: int
    agent: str
    renter: str
    mins: int
    amount: str
    attestation: str
    expiry: int
    rating: int
    accepted: bool
    rejected: bool
    completed: bool
    rated: bool
    prompt: str


@dataclass(frozen=True)
class ContractEvent:
    event_name: str
    block_number: int
    transaction_hash: str
    args: dict[str, str] = field(default_factory=dict)


def fake_evm_hash() -> str:
    return "0x" + secrets.token_hex(32)


def fake_hedera_id() -> str:
    return f"0.0.{secrets.randbelow(9_999_999) + 1}"


class ChainAdapter(ABC):
    """
    Shared plumbing for one capability on one backend.

    Live calls go through ``_submit``: the send is logged as pending, the
    confirmation as confirmed, and any exception as failed with a zero
    reference returned in place of raising. Stub calls go through
    ``_fabricate``, which sleeps briefly and logs confirmed straight away.
    """

    capability: str = ""

    def __init__(
        self,
        backend: str,
        txlog: TransactionLog,
        mode: ChainMode = ChainMode.STUB,
        stub_delay: float = 0.2,
    ) -> None:
        self.backend = backend
        self.txlog = txlog
        self.mode = mode
        self.stub_delay = stub_delay

    @property
    def is_live(self) -> bool:
        return self.mode == ChainMode.LIVE

    def fake_ref(self) -> str:
        """Reference in the backend's own scheme."""
        if self.backend == "hedera":
            return fake_hedera_id()
        return fake_evm_hash()

    def _submit(
        self,
        agent_id: str,
        method: str,
        params: dict[str, Any] | None,
        call: Callable[[Callable[[str], None]], tuple[str, T]],
        fallback: T,
    ) -> tuple[str, T]:
        """
        Run a live call.

        ``call`` receives an ``on_sent`` hook to report the in-flight
        reference and returns ``(confirmed_ref, payload)``.
        """

        def on_sent(tx_ref: str) -> None:
            log.info(
                f"{method} sent",
                extra={"agent_id": agent_id, "method": method, "tx_ref": tx_ref, "backend": self.backend},
            )
            self.txlog.append(agent_id, method, tx_ref, TxStatus.PENDING, params, backend=self.backend)

        try:
            tx_ref, payload = call(on_sent)
        except Exception as exc:
            log.error(
                f"{method} failed: {exc}",
                exc_info=True,
                extra={"agent_id": agent_id, "method": method, "backend": self.backend},
            )
            self.txlog.append(
                agent_id, method, None, TxStatus.FAILED, params, error=str(exc), backend=self.backend
            )
            return ZERO_TX_REF, fallback

        self.txlog.append(agent_id, method, tx_ref, TxStatus.CONFIRMED, params, backend=self.backend)
        return tx_ref, payload

    def _fabricate(
        self,
        agent_id: str,
        method: str,
        params: dict[str, Any] | None,
        tx_ref: str | None = None,
    ) -> str:
        if self.stub_delay > 0:
            time.sleep(self.stub_delay)
        ref = tx_ref or self.fake_ref()
        log.info(
            f"[{self.backend}-stub] {method}",
            extra={"agent_id": agent_id, "method": method, "tx_ref": ref, "backend": self.backend},
        )
        self.txlog.append(agent_id, method, ref, TxStatus.CONFIRMED, params, backend=self.backend)
        return ref


class EscrowService(ChainAdapter):
    capability = "escrow"

    @abstractmethod
    def lock_funds(self, task_id: str, payer_agent_id: str, amount: str) -> str: ...

    @abstractmethod
    def release_funds(self, escrow_id: str, payee_agent_id: str, amount: str) -> str: ...

    @abstractmethod
    def refund_funds(self, escrow_id: str, payer_agent_id: str, amount: str) -> str: ...


class AttestationService(ChainAdapter):
    capability = "attestation"

    @abstractmethod
    def record_attestation(
        self,
        agent_id: str,
        attester_id: str,
        score: float,
        metadata: dict[str, Any] | None = None,
    ) -> AttestationReceipt: ...


class PaymentGateway(ChainAdapter):
    capability = "payment"

    @abstractmethod
    def process_payment(
        self, from_id: str, to: str, amount: str, memo: str | None = None
    ) -> PaymentReceipt: ...


class IdentityService(ChainAdapter):
    capability = "identity"

    @abstractmethod
    def verify_identity(self, agent_id: str) -> IdentityProof: ...


class IdentityTokenService(ChainAdapter):
    capability = "identity_token"

    @abstractmethod
    def mint_identity_token(self, agent_id: str, metadata: dict[str, Any]) -> MintReceipt: ...


class ScheduleService(ChainAdapter):
    capability = "scheduling"

    @abstractmethod
    def schedule_recurring(
        self, task_id: str, interval_seconds: int, payload: dict[str, Any]
    ) -> str: ...


class RegistryService(ChainAdapter):
    """Backend-side agent registry plus its read-only mirrors."""

    capability = "registry"

    @abstractmethod
    def register_agent(
        self,
        agent_id: str,
        encrypted_key: str,
        name: str,
        chain: str,
        price_per_minute: str = "0",
        abilities_mask: str = "0",
    ) -> str: ...

    @abstractmethod
    def deregister(self, agent_id: str, encrypted_key: str) -> str: ...

    @abstractmethod
    def fund_wallet(self, agent_id: str, address: str, amount: str = "0.01") -> str: ...

    @abstractmethod
    def get_onchain_agent(self, address: str) -> OnChainAgent | None: ...

    @abstractmethod
    def get_onchain_agents(self) -> list[OnChainAgent]: ...

    @abstractmethod
    def get_agent_count(self) -> int: ...

    @abstractmethod
    def get_job(self, job_id: int) -> OnChainJob | None: ...

    @abstractmethod
    def get_jobs_for_agent(self, address: str) -> list[OnChainJob]: ...

    @abstractmethod
    def get_open_jobs(self, address: str) -> list[OnChainJob]: ...

    @abstractmethod
    def get_job_count(self) -> int: ...

    @abstractmethod
    def get_balance(self, address: str) -> str: ...

    @abstractmethod
    def query_events(
        self,
        event_type: str | None = None,
        agent_address: str | None = None,
        job_id: int | None = None,
        from_block: int = 0,
        to_block: int | str = "latest",
        limit: int = 100,
    ) -> list[ContractEvent]: ...
